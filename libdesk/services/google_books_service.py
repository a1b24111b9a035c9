import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from libdesk.config import settings
from libdesk.services.http_client import CatalogHTTPClient

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW_LENGTH = 150


@dataclass
class GoogleBookData:
    """Data structure for Google Books API response"""
    isbn: str
    title: str
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    page_count: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    published_date: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    thumbnail_url: Optional[str] = None
    info_link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "page_count": self.page_count,
            "categories": self.categories,
            "published_date": self.published_date,
            "publisher": self.publisher,
            "language": self.language,
            "average_rating": self.average_rating,
            "ratings_count": self.ratings_count,
            "thumbnail_url": self.thumbnail_url,
            "info_link": self.info_link
        }


class GoogleBooksAPIError(Exception):
    """Custom exception for Google Books API errors"""
    pass


class RateLimitExceeded(GoogleBooksAPIError):
    """Exception raised when rate limit is exceeded"""
    pass


# Per-process usage tracking shared by every service instance, reset when the date changes
_usage_lock = threading.Lock()
_usage = {"date": date.today(), "calls": 0}


def reset_daily_usage() -> None:
    with _usage_lock:
        _usage["date"] = date.today()
        _usage["calls"] = 0


class GoogleBooksService:
    """Service for searching the Google Books catalog"""

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None,
                 daily_limit: Optional[int] = None, retries: int = 3, backoff: float = 0.5):
        self.api_key = api_key or settings.google_books_api_key
        self.base_url = "https://www.googleapis.com/books/v1"
        self.daily_limit = daily_limit if daily_limit is not None else settings.google_books_daily_limit
        self.timeout = settings.google_books_timeout
        self.retries = retries
        self.backoff = backoff
        self._transport = transport

    @staticmethod
    def _get_daily_usage() -> int:
        today = date.today()
        with _usage_lock:
            if today > _usage["date"]:
                _usage["date"] = today
                _usage["calls"] = 0
            return _usage["calls"]

    @staticmethod
    def _record_call() -> None:
        with _usage_lock:
            _usage["calls"] += 1

    def _check_rate_limit(self) -> None:
        current_usage = self._get_daily_usage()
        if current_usage >= self.daily_limit:
            logger.warning("Daily rate limit exceeded: %d/%d", current_usage, self.daily_limit)
            raise RateLimitExceeded("Daily rate limit exceeded")

    async def _make_api_request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make an API request to Google Books"""
        self._check_rate_limit()
        url = f"{self.base_url}/{endpoint}"

        if self.api_key:
            params["key"] = self.api_key

        start_time = time.time()
        try:
            async with CatalogHTTPClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get_with_retry(url, retries=self.retries, backoff=self.backoff, params=params)
        except httpx.TimeoutException as e:
            logger.error("API request timed out after %ss", self.timeout)
            raise GoogleBooksAPIError(f"Request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.error("API request failed: %s", e)
            raise GoogleBooksAPIError(f"Google Books unreachable: {e}") from e

        self._record_call()
        response_time_ms = int((time.time() - start_time) * 1000)
        logger.info("Google Books %s -> %d in %dms", endpoint, response.status_code, response_time_ms)

        if response.status_code == 429:
            logger.warning("Rate limit exceeded for Google Books API")
            raise RateLimitExceeded("Rate limit exceeded")
        if response.status_code != 200:
            logger.error("API request failed: %s - %s", response.status_code, response.text)
            raise GoogleBooksAPIError(f"Google Books returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise GoogleBooksAPIError("Google Books returned an invalid response") from e

    @staticmethod
    def _parse_volume_info(volume_data: Dict[str, Any], isbn: str) -> GoogleBookData:
        """Parse volume info from Google Books API response"""
        volume_info = volume_data.get("volumeInfo", {})

        image_links = volume_info.get("imageLinks", {})
        thumbnail_url = None
        # Prefer highest resolution available
        for key in ["extraLarge", "large", "medium", "small", "thumbnail", "smallThumbnail"]:
            url = image_links.get(key)
            if url:
                thumbnail_url = url
                break

        return GoogleBookData(
            isbn=isbn,
            title=volume_info.get("title", ""),
            authors=volume_info.get("authors", []),
            description=volume_info.get("description"),
            page_count=volume_info.get("pageCount"),
            categories=volume_info.get("categories", []),
            published_date=volume_info.get("publishedDate"),
            publisher=volume_info.get("publisher"),
            language=volume_info.get("language"),
            average_rating=volume_info.get("averageRating"),
            ratings_count=volume_info.get("ratingsCount"),
            thumbnail_url=thumbnail_url,
            info_link=volume_info.get("infoLink")
        )

    @staticmethod
    def _extract_isbn(item: Dict[str, Any]) -> str:
        identifiers = item.get("volumeInfo", {}).get("industryIdentifiers", [])
        for wanted in ("ISBN_13", "ISBN_10"):
            for identifier in identifiers:
                if identifier.get("type") == wanted:
                    return identifier.get("identifier", "")
        # Use Google Books ID as fallback
        return item.get("id", "")

    async def fetch_book_by_isbn(self, isbn: str) -> Optional[GoogleBookData]:
        """
        Fetch book data by ISBN from Google Books API

        Args:
            isbn: Book ISBN (10 or 13 digits)

        Returns:
            GoogleBookData object or None if not found
        """
        if not isbn or not isbn.strip():
            logger.warning("Empty ISBN provided")
            return None

        clean_isbn = ''.join(c for c in isbn if c.isalnum())
        response = await self._make_api_request("volumes", {"q": f"isbn:{clean_isbn}", "maxResults": 1})

        items = response.get("items", []) if response.get("totalItems", 0) > 0 else []
        if not items:
            logger.info("Book not found in Google Books: ISBN %s", clean_isbn)
            return None

        book_data = self._parse_volume_info(items[0], clean_isbn)
        logger.info("Book found via Google Books: %s by %s", book_data.title, ", ".join(book_data.authors))
        return book_data

    async def search_books(self, query: str, max_results: Optional[int] = None) -> List[GoogleBookData]:
        """
        Search for books using a text query

        Args:
            query: Search query (title, author, etc.)
            max_results: Maximum number of results to return

        Returns:
            List of GoogleBookData objects
        """
        if not query or not query.strip():
            logger.warning("Empty search query provided")
            return []

        if max_results is None:
            max_results = settings.google_books_max_results
        params = {
            "q": query.strip(),
            "maxResults": max(1, min(max_results, 40))  # Google Books API limit
        }
        response = await self._make_api_request("volumes", params)

        if response.get("totalItems", 0) == 0:
            logger.info("No books found for query: %s", query)
            return []

        books = [self._parse_volume_info(item, self._extract_isbn(item)) for item in response.get("items", [])]
        books = books[:max_results]
        logger.info("Found %d books for query: %s", len(books), query)
        return books

    def search_in_background(self, query: str,
                             callback: Callable[[Union[str, BaseException]], None]) -> threading.Thread:
        """Run a search on a worker thread and hand the formatted text (or the error) to ``callback``."""
        def worker() -> None:
            try:
                books = asyncio.run(self.search_books(query))
                text = format_search_results(query, books)
            except GoogleBooksAPIError as e:
                callback(e)
                return
            except Exception as e:
                logger.exception("Background search for %r failed", query)
                callback(e)
                return
            callback(text)

        thread = threading.Thread(target=worker, name="google-books-search", daemon=True)
        thread.start()
        return thread

    def get_usage_stats(self) -> Dict[str, Any]:
        daily_usage = self._get_daily_usage()
        return {
            "daily_calls_used": daily_usage,
            "daily_limit": self.daily_limit,
            "calls_remaining": max(0, self.daily_limit - daily_usage),
            "api_key_configured": self.api_key is not None,
        }


def format_search_results(query: str, books: List[GoogleBookData], limit: int = 3) -> str:
    if not books:
        return f'No books found for "{query}".'

    lines = [f'Search Results for "{query}":', ""]
    for i, book in enumerate(books[:limit], 1):
        description = book.description or "No description available."
        if len(description) > DESCRIPTION_PREVIEW_LENGTH:
            description = description[:DESCRIPTION_PREVIEW_LENGTH] + "..."
        lines.extend([
            f"Book {i}:",
            f"Title: {book.title or 'Unknown Title'}",
            f"Authors: {', '.join(book.authors) if book.authors else 'Unknown Author'}",
            f"Publisher: {book.publisher or 'Unknown Publisher'}",
            f"Published Date: {book.published_date or 'Unknown Date'}",
            f"Description: {description}",
            "",
        ])
    return "\n".join(lines)
