from __future__ import annotations

from typing import List


class Document:
    """A single catalog entry; ``quantity`` is the number of copies on the shelf."""

    def __init__(self, id: str, title: str, author: str, quantity: int = 1, subject: str = "") -> None:
        self.id = (id or "").strip()
        self.title = (title or "").strip()
        self.author = (author or "").strip()
        self.subject = (subject or "").strip()
        quantity = int(quantity)
        if quantity < 0:
            raise ValueError("Quantity cannot be negative.")
        self.quantity = quantity

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ID: {self.id})"

    def __repr__(self) -> str:
        return f"Document(id={self.id!r}, title={self.title!r}, quantity={self.quantity})"

    def get_info(self) -> str:
        return (
            f"ID: {self.id}\n"
            f"Title: {self.title}\n"
            f"Author: {self.author}\n"
            f"Quantity: {self.quantity}\n"
            f"Subject: {self.subject}"
        )

    def to_row(self) -> List[str]:
        return [self.id, self.title, self.author, str(self.quantity), self.subject]

    @staticmethod
    def from_row(row: List[str]) -> "Document":
        if len(row) < 5:
            raise ValueError(f"expected 5 fields, got {len(row)}")
        return Document(id=row[0], title=row[1], author=row[2], quantity=int(row[3]), subject=row[4])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "quantity": self.quantity,
            "subject": self.subject,
        }

    @staticmethod
    def from_dict(data: dict) -> "Document":
        return Document(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            quantity=data.get("quantity", 1),
            subject=data.get("subject") or "",
        )
