from __future__ import annotations

from typing import Dict, List, Optional

from libdesk.document import Document


class User:
    """A patron (or admin account) with a ledger of borrowed copies per document id."""

    def __init__(self, username: str, password: str, name: Optional[str] = None) -> None:
        self.username = (username or "").strip()
        self.password = password
        self._name = name.strip() if name and name.strip() else None
        self._borrowed: Dict[str, int] = {}

    @property
    def name(self) -> str:
        return self._name or self.username

    @name.setter
    def name(self, value: Optional[str]) -> None:
        self._name = value.strip() if value and value.strip() else None

    def borrow_document(self, doc: Document, quantity: int) -> bool:
        """Move ``quantity`` copies from the shelf to this user's ledger.

        Nothing changes (and False is returned) when the shelf holds fewer copies.
        """
        if quantity <= 0 or doc.quantity < quantity:
            return False
        doc.quantity -= quantity
        self._borrowed[doc.id] = self._borrowed.get(doc.id, 0) + quantity
        return True

    def return_document(self, doc: Document, quantity: int) -> bool:
        held = self._borrowed.get(doc.id, 0)
        if quantity <= 0 or held < quantity:
            return False
        doc.quantity += quantity
        remaining = held - quantity
        if remaining > 0:
            self._borrowed[doc.id] = remaining
        else:
            del self._borrowed[doc.id]
        return True

    def restore_borrowed(self, doc_id: str, quantity: int) -> None:
        """Rebuild a ledger entry loaded from disk; stock is not touched."""
        if quantity > 0:
            self._borrowed[doc_id] = self._borrowed.get(doc_id, 0) + quantity

    @property
    def borrowed_documents(self) -> Dict[str, int]:
        return dict(self._borrowed)

    def borrowed_quantity(self, doc_id: str) -> int:
        return self._borrowed.get(doc_id, 0)

    @property
    def total_borrowed(self) -> int:
        return sum(self._borrowed.values())

    def to_row(self) -> List[str]:
        return [self.username, self.password, self.name]

    @staticmethod
    def from_row(row: List[str]) -> "User":
        if len(row) < 3:
            raise ValueError(f"expected 3 fields, got {len(row)}")
        return User(row[0], row[1], row[2])

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "name": self.name,
            "borrowed": self.borrowed_documents,
            "total_borrowed": self.total_borrowed,
        }
