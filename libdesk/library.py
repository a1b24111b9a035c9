import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from libdesk import storage
from libdesk.config import settings
from libdesk.document import Document
from libdesk.records import BookRating, BorrowedRecord
from libdesk.user import User

logger = logging.getLogger(__name__)


@dataclass
class OverdueLoan:
    record: BorrowedRecord
    user: User
    document: Document
    days_borrowed: int


@dataclass
class LoanLine:
    title: str
    quantity: int
    status: str


@dataclass
class UserBorrowingSummary:
    username: str
    name: str
    total_borrowed: int
    loans: List[LoanLine] = field(default_factory=list)


class Library:
    """Manages documents, patrons, loans and ratings, mirrored to CSV on every change."""

    def __init__(self, data_dir: Optional[str] = None, loan_days: Optional[int] = None) -> None:
        self.data_dir = Path(data_dir if data_dir is not None else storage.DATA_DIR)
        self.loan_days = int(loan_days if loan_days is not None else settings.loan_days)

        self.documents: Dict[str, Document] = {}
        self.users: Dict[str, User] = {}
        self.borrow_log: List[BorrowedRecord] = []
        self._ratings: List[BookRating] = []

        self._load_documents()
        self._load_users()
        self._load_borrowed()
        self._load_borrow_log()
        self._load_ratings()

    # ------------------------- Documents ------------------------- #
    def add_document(self, doc: Document) -> Document:
        """Add a document; an existing id has its quantity increased instead of being duplicated."""
        if not doc.id:
            raise ValueError("Document ID cannot be empty.")
        if doc.quantity < 0:
            raise ValueError("Quantity cannot be negative.")
        stored = self._merge_document(self.documents, doc)
        self._save_documents()
        logger.info("Added %d copies of %s", doc.quantity, doc.id)
        return stored

    def add_document_from_catalog(self, isbn: str, quantity: int = 1, subject: str = "", service: Any = None) -> Document:
        """Look up ``isbn`` in the Google Books catalog and add it with the ISBN as id."""
        isbn = self._normalize_isbn(isbn)
        if not isbn:
            raise ValueError("ISBN cannot be empty.")
        if service is None:
            from libdesk.services.google_books_service import GoogleBooksService
            service = GoogleBooksService()

        book = asyncio.run(service.fetch_book_by_isbn(isbn))
        if not book or not book.title:
            raise LookupError(f"No catalog entry for ISBN {isbn}.")

        author = ", ".join(book.authors) if book.authors else "Unknown Author"
        if not subject and book.categories:
            subject = book.categories[0]
        return self.add_document(Document(isbn, book.title, author, quantity, subject))

    def remove_document(self, id_or_title: str, quantity: Optional[int] = None) -> int:
        """Remove ``quantity`` copies (all copies when None). Returns the number of copies removed.

        Refused while any user is holding copies of the document.
        """
        doc = self.find_document(id_or_title)
        if doc is None:
            raise DocumentNotFoundError(f"Document {id_or_title} not found.")
        if self.is_borrowed(doc.id):
            raise DocumentBorrowedError(f"Cannot remove {doc.title} because it is currently borrowed.")

        if quantity is None:
            removed = doc.quantity
            del self.documents[doc.id]
        else:
            if quantity <= 0:
                raise ValueError("Quantity to remove must be positive.")
            if quantity > doc.quantity:
                raise InsufficientStockError(
                    f"Quantity to remove exceeds available copies ({doc.quantity})."
                )
            doc.quantity -= quantity
            removed = quantity
            if doc.quantity == 0:
                del self.documents[doc.id]
        self._save_documents()
        logger.info("Removed %d copies of %s", removed, doc.id)
        return removed

    def update_quantity(self, doc_id: str, quantity: int) -> Document:
        doc = self._require_document(doc_id)
        if quantity < 0:
            raise ValueError("Quantity cannot be negative.")
        doc.quantity = quantity
        self._save_documents()
        return doc

    def update_document(self, doc_id: str, *, title: Optional[str] = None, author: Optional[str] = None,
                        subject: Optional[str] = None) -> Document:
        """Update descriptive fields of a document. Blank values keep the current value."""
        if title is None and author is None and subject is None:
            raise ValueError("Nothing to update. Provide title, author and/or subject.")
        doc = self._require_document(doc_id)
        if title is not None and title.strip():
            doc.title = title.strip()
        if author is not None and author.strip():
            doc.author = author.strip()
        if subject is not None and subject.strip():
            doc.subject = subject.strip()
        self._save_documents()
        return doc

    def find_by_id(self, doc_id: str) -> Optional[Document]:
        return self.documents.get((doc_id or "").strip())

    def find_document(self, id_or_title: str) -> Optional[Document]:
        """Find by id first, then by case-insensitive title."""
        doc = self.find_by_id(id_or_title)
        if doc is not None:
            return doc
        wanted = (id_or_title or "").strip().lower()
        for candidate in self.list_documents():
            if candidate.title.lower() == wanted:
                return candidate
        return None

    def search_documents(self, query: str) -> List[Document]:
        q = (query or "").strip().lower()
        return [d for d in self.list_documents() if q in d.title.lower() or q in d.author.lower()]

    def list_documents(self) -> List[Document]:
        return [self.documents[k] for k in sorted(self.documents)]

    def subjects(self) -> List[str]:
        return sorted({d.subject for d in self.documents.values() if d.subject})

    def documents_by_subject(self, subject: str) -> List[Document]:
        return [d for d in self.list_documents() if d.subject == subject]

    def clear_documents(self) -> None:
        if any(u.total_borrowed for u in self.users.values()):
            raise DocumentBorrowedError("Cannot clear documents while copies are borrowed.")
        self.documents.clear()
        self._save_documents()

    def is_borrowed(self, doc_id: str) -> bool:
        return any(u.borrowed_quantity(doc_id) > 0 for u in self.users.values())

    # ------------------------- Users ------------------------- #
    def add_user(self, username: str, name: str, password: Optional[str] = None) -> User:
        username = (username or "").strip()
        if not username:
            raise ValueError("User ID cannot be empty.")
        if username in self.users:
            raise DuplicateUserError(f"User {username} already exists.")
        user = User(username, password or settings.default_user_password, name)
        self.users[username] = user
        self._save_users()
        logger.info("Registered user %s", username)
        return user

    def find_user(self, username: str) -> Optional[User]:
        return self.users.get((username or "").strip())

    def list_users(self) -> List[User]:
        return [self.users[k] for k in sorted(self.users)]

    def remove_user(self, username: str) -> None:
        user = self._require_user(username)
        if user.total_borrowed:
            raise ValueError(f"User {user.username} still has borrowed documents.")
        del self.users[user.username]
        self._save_users()

    # ------------------------- Circulation ------------------------- #
    def borrow_document(self, user_id: str, doc_id: str, quantity: int, on: Optional[date] = None) -> BorrowedRecord:
        user = self._require_user(user_id)
        doc = self._require_document(doc_id)
        if quantity <= 0:
            raise ValueError("Quantity to borrow must be positive.")
        if quantity > doc.quantity:
            raise InsufficientStockError(f"Not enough copies available. Only {doc.quantity} left.")

        user.borrow_document(doc, quantity)
        record = BorrowedRecord(user.username, doc.id, quantity, on or date.today())
        # The borrow log is appended only after the ledger files are written
        self._save_documents()
        self._save_borrowed()
        storage.append_row(self._path(storage.BORROW_LOG_FILE), record.to_row())
        self.borrow_log.append(record)
        logger.info("%s borrowed %d copies of %s", user.username, quantity, doc.id)
        return record

    def return_document(self, user_id: str, doc_id: str, quantity: int) -> None:
        user = self._require_user(user_id)
        doc = self._require_document(doc_id)
        if quantity <= 0:
            raise ValueError("Quantity to return must be positive.")
        held = user.borrowed_quantity(doc.id)
        if quantity > held:
            raise InsufficientBorrowError(f"Cannot return more than borrowed. Only {held} copies borrowed.")

        user.return_document(doc, quantity)
        self._consume_borrow_log(user.username, doc.id, quantity)
        self._save_documents()
        self._save_borrowed()
        self._save_borrow_log()
        logger.info("%s returned %d copies of %s", user.username, quantity, doc.id)

    def _consume_borrow_log(self, user_id: str, doc_id: str, quantity: int) -> None:
        """Take ``quantity`` copies off the user's log entries for the document, oldest first."""
        remaining = quantity
        matching = sorted(
            (r for r in self.borrow_log if r.user_id == user_id and r.doc_id == doc_id),
            key=lambda r: r.borrow_date,
        )
        for record in matching:
            if remaining == 0:
                break
            taken = min(record.quantity, remaining)
            record.quantity -= taken
            remaining -= taken
        self.borrow_log = [r for r in self.borrow_log if r.quantity > 0]

    def borrow_records(self) -> List[BorrowedRecord]:
        return list(self.borrow_log)

    def overdue_records(self, today: Optional[date] = None) -> List[OverdueLoan]:
        today = today or date.today()
        overdue: List[OverdueLoan] = []
        for record in self.borrow_log:
            if not record.is_overdue(today, self.loan_days):
                continue
            user = self.find_user(record.user_id)
            doc = self.find_by_id(record.doc_id)
            if user is not None and doc is not None:
                overdue.append(OverdueLoan(record, user, doc, record.days_borrowed(today)))
        return overdue

    def borrowing_statistics(self, today: Optional[date] = None) -> List[UserBorrowingSummary]:
        """Per-user totals with a due-date status for every document on loan."""
        today = today or date.today()
        summaries: List[UserBorrowingSummary] = []
        for user in self.list_users():
            summary = UserBorrowingSummary(user.username, user.name, user.total_borrowed)
            for doc_id, quantity in sorted(user.borrowed_documents.items()):
                doc = self.find_by_id(doc_id)
                if doc is None:
                    continue
                record = self._oldest_record(user.username, doc_id)
                status = record.status(today, self.loan_days) if record else "Borrow date unknown"
                summary.loans.append(LoanLine(doc.title, quantity, status))
            summaries.append(summary)
        return summaries

    def _oldest_record(self, user_id: str, doc_id: str) -> Optional[BorrowedRecord]:
        matching = [r for r in self.borrow_log if r.user_id == user_id and r.doc_id == doc_id]
        return min(matching, key=lambda r: r.borrow_date) if matching else None

    # ------------------------- Ratings ------------------------- #
    def rate_document(self, title: str, user_id: str, rating: int, comment: str = "") -> BookRating:
        entry = BookRating(title, user_id, rating, comment)
        self._ratings.append(entry)
        self._save_ratings()
        return entry

    def ratings(self) -> List[BookRating]:
        return list(self._ratings)

    def ratings_for(self, title: str) -> List[BookRating]:
        wanted = (title or "").strip().lower()
        return [r for r in self._ratings if r.book_title.lower() == wanted]

    def average_rating(self, title: str) -> Optional[float]:
        ratings = self.ratings_for(title)
        if not ratings:
            return None
        return sum(r.rating for r in ratings) / len(ratings)

    def get_statistics(self, today: Optional[date] = None) -> Dict[str, Any]:
        return {
            "total_documents": len(self.documents),
            "copies_in_stock": sum(d.quantity for d in self.documents.values()),
            "total_users": len(self.users),
            "copies_on_loan": sum(u.total_borrowed for u in self.users.values()),
            "overdue_loans": len(self.overdue_records(today)),
            "total_ratings": len(self._ratings),
        }

    # ------------------------- Persistence ------------------------- #
    def _path(self, filename: str) -> Path:
        return storage.data_path(filename, self.data_dir)

    @staticmethod
    def _merge_document(target: Dict[str, Document], doc: Document) -> Document:
        existing = target.get(doc.id)
        if existing is None:
            target[doc.id] = doc
            return doc
        existing.quantity += doc.quantity
        return existing

    def _load_documents(self) -> None:
        self.documents = {}
        for doc in storage.load_records(self._path(storage.DOCUMENTS_FILE), Document.from_row):
            self._merge_document(self.documents, doc)

    def _load_users(self) -> None:
        users = storage.load_records(self._path(storage.USERS_FILE), User.from_row)
        self.users = {u.username: u for u in users}

    def _load_borrowed(self) -> None:
        rows = storage.load_records(self._path(storage.BORROWED_FILE), _parse_borrowed_row)
        for user_id, doc_id, quantity in rows:
            user = self.users.get(user_id)
            if user is None or doc_id not in self.documents:
                logger.warning("Dropping borrowed entry for unknown user/document: %s/%s", user_id, doc_id)
                continue
            user.restore_borrowed(doc_id, quantity)

    def _load_borrow_log(self) -> None:
        self.borrow_log = storage.load_records(self._path(storage.BORROW_LOG_FILE), BorrowedRecord.from_row)

    def _load_ratings(self) -> None:
        self._ratings = storage.load_records(self._path(storage.RATINGS_FILE), BookRating.from_row)

    def _save_documents(self) -> None:
        storage.write_rows(self._path(storage.DOCUMENTS_FILE), (d.to_row() for d in self.list_documents()))

    def _save_users(self) -> None:
        storage.write_rows(self._path(storage.USERS_FILE), (u.to_row() for u in self.list_users()))

    def _save_borrowed(self) -> None:
        rows = [
            [user.username, doc_id, str(quantity)]
            for user in self.list_users()
            for doc_id, quantity in sorted(user.borrowed_documents.items())
        ]
        storage.write_rows(self._path(storage.BORROWED_FILE), rows)

    def _save_borrow_log(self) -> None:
        storage.write_rows(self._path(storage.BORROW_LOG_FILE), (r.to_row() for r in self.borrow_log))

    def _save_ratings(self) -> None:
        storage.write_rows(self._path(storage.RATINGS_FILE), (r.to_row() for r in self._ratings))

    def save_all(self) -> None:
        """Rewrite every file from memory (used on exit)."""
        self._save_documents()
        self._save_users()
        self._save_borrowed()
        self._save_borrow_log()
        self._save_ratings()

    # ------------------------- Utilities ------------------------- #
    def _require_document(self, doc_id: str) -> Document:
        doc = self.find_by_id(doc_id)
        if doc is None:
            raise DocumentNotFoundError(f"Document {doc_id} not found.")
        return doc

    def _require_user(self, username: str) -> User:
        user = self.find_user(username)
        if user is None:
            raise UserNotFoundError(f"User {username} not found.")
        return user

    @staticmethod
    def _normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        cleaned = "".join(ch for ch in raw if ch.isalnum())
        return cleaned.upper()


def _parse_borrowed_row(row: List[str]) -> Tuple[str, str, int]:
    if len(row) < 3:
        raise ValueError(f"expected 3 fields, got {len(row)}")
    quantity = int(row[2])
    if quantity <= 0:
        raise ValueError("borrowed quantity must be positive")
    return row[0], row[1], quantity


class DocumentNotFoundError(LookupError):
    pass


class UserNotFoundError(LookupError):
    pass


class DuplicateUserError(ValueError):
    pass


class InsufficientStockError(ValueError):
    pass


class InsufficientBorrowError(ValueError):
    pass


class DocumentBorrowedError(ValueError):
    pass
