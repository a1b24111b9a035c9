import re
from typing import Optional


def parse_quantity(raw: Optional[str], allow_zero: bool = True) -> int:
    """Parse a copy count typed by the librarian."""
    try:
        value = int((raw or "").strip())
    except ValueError:
        raise ValueError("Invalid quantity. Please enter a number.") from None
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError("Invalid quantity. Please enter a positive number.")
    return value


def validate_rating(raw) -> int:
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ValueError("Rating must be a number between 1 and 5.") from None
    if not 1 <= value <= 5:
        raise ValueError("Rating must be a number between 1 and 5.")
    return value


class TextValidator:
    """Basic checks for ids and names typed into prompts."""

    @staticmethod
    def validate_identifier(text: Optional[str]) -> bool:
        if text is None:
            return False
        t = text.strip()
        return bool(t) and not any(c.isspace() for c in t)

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        # must not be digits only
        if name is None:
            return False
        t = name.strip()
        if not t:
            return False
        return not t.isdigit()

    @staticmethod
    def sanitize_field(text: Optional[str]) -> str:
        """Collapse newlines and runs of whitespace so a value stays on one CSV line."""
        if text is None:
            return ""
        return re.sub(r"\s+", " ", text).strip()
