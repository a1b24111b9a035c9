import asyncio
import threading
from unittest.mock import AsyncMock

import httpx
import pytest

from libdesk.services.google_books_service import (
    GoogleBookData,
    GoogleBooksAPIError,
    GoogleBooksService,
    RateLimitExceeded,
    format_search_results,
)

VOLUMES = {
    "totalItems": 2,
    "items": [
        {
            "id": "vol1",
            "volumeInfo": {
                "title": "Dune",
                "authors": ["Frank Herbert"],
                "publisher": "Ace",
                "publishedDate": "1990",
                "description": "x" * 200,
                "categories": ["Fiction"],
                "industryIdentifiers": [
                    {"type": "ISBN_10", "identifier": "0441172717"},
                    {"type": "ISBN_13", "identifier": "9780441172719"},
                ],
                "imageLinks": {"thumbnail": "http://img/thumb", "small": "http://img/small"},
            },
        },
        {"id": "vol2", "volumeInfo": {"title": "Dune Messiah"}},
    ],
}


def make_service(handler, **kwargs):
    return GoogleBooksService(api_key=None, transport=httpx.MockTransport(handler), backoff=0, **kwargs)


def test_search_books_parses_volumes():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        return httpx.Response(200, json=VOLUMES)

    books = asyncio.run(make_service(handler).search_books("frank herbert", max_results=3))

    assert seen["url"].path == "/books/v1/volumes"
    assert seen["url"].params["q"] == "frank herbert"
    assert seen["url"].params["maxResults"] == "3"
    assert [b.title for b in books] == ["Dune", "Dune Messiah"]
    assert books[0].isbn == "9780441172719"
    assert books[0].thumbnail_url == "http://img/small"
    assert books[1].isbn == "vol2"
    assert books[1].authors == []


def test_search_books_empty_query_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert asyncio.run(make_service(handler).search_books("   ")) == []


def test_search_books_no_results():
    service = make_service(lambda request: httpx.Response(200, json={"totalItems": 0}))
    assert asyncio.run(service.search_books("zzzz")) == []


def test_http_429_raises_rate_limit():
    service = make_service(lambda request: httpx.Response(429))
    with pytest.raises(RateLimitExceeded):
        asyncio.run(service.search_books("dune"))


def test_server_error_raises():
    service = make_service(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(GoogleBooksAPIError, match="HTTP 500"):
        asyncio.run(service.search_books("dune"))


def test_network_error_is_retried_then_raised():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(GoogleBooksAPIError, match="unreachable"):
        asyncio.run(make_service(handler, retries=3).search_books("dune"))
    assert len(calls) == 3


def test_daily_limit_enforced():
    service = make_service(lambda request: httpx.Response(200, json=VOLUMES), daily_limit=1)

    asyncio.run(service.search_books("dune"))
    assert service.get_usage_stats()["calls_remaining"] == 0
    with pytest.raises(RateLimitExceeded):
        asyncio.run(service.search_books("dune"))


def test_daily_limit_shared_between_instances():
    def handler(request):
        return httpx.Response(200, json=VOLUMES)

    asyncio.run(make_service(handler, daily_limit=1).search_books("dune"))

    second = make_service(handler, daily_limit=1)
    assert second.get_usage_stats()["daily_calls_used"] == 1
    with pytest.raises(RateLimitExceeded):
        asyncio.run(second.search_books("dune"))


def test_fetch_book_by_isbn():
    seen = {}

    def handler(request):
        seen["q"] = request.url.params["q"]
        return httpx.Response(200, json={"totalItems": 1, "items": VOLUMES["items"][:1]})

    book = asyncio.run(make_service(handler).fetch_book_by_isbn("978-0441172719"))

    assert seen["q"] == "isbn:9780441172719"
    assert book.title == "Dune"
    assert book.isbn == "9780441172719"
    assert book.categories == ["Fiction"]


def test_fetch_book_by_isbn_not_found():
    service = make_service(lambda request: httpx.Response(200, json={"totalItems": 0}))
    assert asyncio.run(service.fetch_book_by_isbn("0000000000")) is None


def test_format_search_results():
    books = [
        GoogleBookData(isbn="1", title="Dune", authors=["Frank Herbert"], description="d" * 160),
        GoogleBookData(isbn="2", title=""),
    ]

    text = format_search_results("dune", books)

    assert text.startswith('Search Results for "dune":')
    assert "Book 1:\nTitle: Dune\nAuthors: Frank Herbert\nPublisher: Unknown Publisher" in text
    assert "Description: " + "d" * 150 + "...\n" in text
    assert "Title: Unknown Title" in text
    assert "Description: No description available." in text


def test_format_search_results_limits_and_empty():
    books = [GoogleBookData(isbn=str(i), title=f"Book {i}") for i in range(5)]

    assert "Book 4:" not in format_search_results("q", books)
    assert format_search_results("nothing", []) == 'No books found for "nothing".'


def test_search_in_background_delivers_text():
    service = make_service(lambda request: httpx.Response(200, json=VOLUMES))
    results = []
    done = threading.Event()

    def callback(outcome):
        results.append(outcome)
        done.set()

    thread = service.search_in_background("dune", callback)
    thread.join(timeout=5)

    assert done.is_set()
    assert results[0].startswith('Search Results for "dune":')


def test_search_in_background_delivers_error():
    service = make_service(lambda request: httpx.Response(500))
    results = []

    service.search_in_background("dune", results.append).join(timeout=5)

    assert isinstance(results[0], GoogleBooksAPIError)


def test_search_in_background_delivers_unexpected_errors(monkeypatch):
    service = make_service(lambda request: httpx.Response(200, json=VOLUMES))
    monkeypatch.setattr(GoogleBooksService, "search_books", AsyncMock(side_effect=KeyError("volumeInfo")))
    results = []

    service.search_in_background("dune", results.append).join(timeout=5)

    assert len(results) == 1
    assert isinstance(results[0], KeyError)
