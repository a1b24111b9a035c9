import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Storage
    data_dir: str = os.getenv("LIBRARY_DATA_DIR", ".")

    # Circulation
    loan_days: int = int(os.getenv("LIBRARY_LOAN_DAYS", "7"))
    default_user_password: str = os.getenv("DEFAULT_USER_PASSWORD", "user123")

    # Google Books
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    google_books_daily_limit: int = int(os.getenv("GOOGLE_BOOKS_DAILY_LIMIT", "1000"))
    google_books_max_results: int = int(os.getenv("GOOGLE_BOOKS_MAX_RESULTS", "3"))
    enable_google_books: bool = _env_flag("ENABLE_GOOGLE_BOOKS", "True")

    # Application
    app_name: str = os.getenv("APP_NAME", "Library Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")
    debug: bool = _env_flag("DEBUG", "False")


settings = Settings()
