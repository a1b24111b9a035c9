from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List


@dataclass
class BorrowedRecord:
    """One dated borrow transaction from the borrow log."""
    user_id: str
    doc_id: str
    quantity: int
    borrow_date: date

    def days_borrowed(self, today: date) -> int:
        return (today - self.borrow_date).days

    def due_date(self, loan_days: int) -> date:
        return self.borrow_date + timedelta(days=loan_days)

    def days_remaining(self, today: date, loan_days: int) -> int:
        return max(0, loan_days - self.days_borrowed(today))

    def days_overdue(self, today: date, loan_days: int) -> int:
        return max(0, self.days_borrowed(today) - loan_days)

    def is_overdue(self, today: date, loan_days: int) -> bool:
        return self.days_borrowed(today) > loan_days

    def status(self, today: date, loan_days: int) -> str:
        if self.is_overdue(today, loan_days):
            return f"Overdue by {self.days_overdue(today, loan_days)} days"
        remaining = self.days_remaining(today, loan_days)
        if remaining == 0:
            return "Due today"
        return f"{remaining} days remaining"

    def to_row(self) -> List[str]:
        return [self.user_id, self.doc_id, str(self.quantity), self.borrow_date.isoformat()]

    @staticmethod
    def from_row(row: List[str]) -> "BorrowedRecord":
        if len(row) < 4:
            raise ValueError(f"expected 4 fields, got {len(row)}")
        quantity = int(row[2])
        if quantity <= 0:
            raise ValueError("borrowed quantity must be positive")
        return BorrowedRecord(row[0], row[1], quantity, date.fromisoformat(row[3]))

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "doc_id": self.doc_id,
            "quantity": self.quantity,
            "borrow_date": self.borrow_date.isoformat(),
        }


@dataclass
class BookRating:
    book_title: str
    user_id: str
    rating: int
    comment: str = "No comment"

    def __post_init__(self) -> None:
        self.rating = int(self.rating)
        if not 1 <= self.rating <= 5:
            raise ValueError("Rating must be between 1 and 5.")
        if not self.comment or not self.comment.strip():
            self.comment = "No comment"

    def __str__(self) -> str:
        return (
            f"Book: {self.book_title}\n"
            f"User: {self.user_id}\n"
            f"Rating: {self.rating} stars\n"
            f"Comment: {self.comment}\n"
        )

    def to_row(self) -> List[str]:
        return [self.book_title, self.user_id, str(self.rating), self.comment]

    @staticmethod
    def from_row(row: List[str]) -> "BookRating":
        if len(row) < 4:
            raise ValueError(f"expected 4 fields, got {len(row)}")
        # An unquoted comma in a hand-edited comment splits it into extra fields.
        comment = ",".join(row[3:])
        return BookRating(row[0], row[1], int(row[2]), comment)

    def to_dict(self) -> dict:
        return {
            "book_title": self.book_title,
            "user_id": self.user_id,
            "rating": self.rating,
            "comment": self.comment,
        }
