"""Admin accounts used to log in to the desk application."""

import hashlib
import hmac
import logging
import secrets
from pathlib import Path
from typing import Dict, List, Optional

from libdesk import storage
from libdesk.user import User

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"
HASH_ITERATIONS = 200_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), HASH_ITERATIONS)
    return f"{HASH_SCHEME}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Check ``password`` against a stored hash; plain-text entries from old account files also match."""
    parts = stored.split("$")
    if len(parts) == 3 and parts[0] == HASH_SCHEME:
        return hmac.compare_digest(hash_password(password, parts[1]), stored)
    return hmac.compare_digest(password, stored)


class AccountManager:
    """Registers admin accounts and checks logins against ``account.csv``."""

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self.data_dir = Path(data_dir if data_dir is not None else storage.DATA_DIR)
        self.accounts: Dict[str, User] = {}
        self._load_accounts()

    def register(self, username: str, password: str) -> bool:
        """Create an account. Returns False if the username is taken or a field is blank."""
        username = (username or "").strip()
        if not username or not password or username in self.accounts:
            return False
        self.accounts[username] = User(username, hash_password(password))
        self._save_accounts()
        logger.info("Registered account %s", username)
        return True

    def login(self, username: str, password: str) -> Optional[User]:
        user = self.accounts.get((username or "").strip())
        if user is not None and verify_password(password or "", user.password):
            return user
        logger.info("Failed login for %s", username)
        return None

    def get_user(self, username: str) -> Optional[User]:
        return self.accounts.get(username)

    def _path(self) -> Path:
        return storage.data_path(storage.ACCOUNTS_FILE, self.data_dir)

    def _load_accounts(self) -> None:
        for user in storage.load_records(self._path(), _parse_account_row):
            self.accounts[user.username] = user

    def _save_accounts(self) -> None:
        rows = ([u.username, u.password] for _, u in sorted(self.accounts.items()))
        storage.write_rows(self._path(), rows)


def _parse_account_row(row: List[str]) -> User:
    if len(row) < 2:
        raise ValueError(f"expected 2 fields, got {len(row)}")
    return User(row[0], row[1])
