import asyncio
import logging
from typing import Optional

import httpx

from libdesk.config import settings

logger = logging.getLogger(__name__)


class CatalogHTTPClient:
    """Async HTTP client with connection limits and retry on transient network errors."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=5,
            max_connections=10,
            keepalive_expiry=30.0
        )

        read_timeout = timeout if timeout is not None else settings.google_books_timeout
        self._timeout = httpx.Timeout(
            timeout=read_timeout,
            connect=5.0,
            read=read_timeout,
            write=5.0
        )

        self._client = httpx.AsyncClient(
            limits=limits,
            timeout=self._timeout,
            follow_redirects=True,
            transport=transport
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def get_with_retry(self, url: str, retries: int = 3, backoff: float = 0.5, **kwargs) -> httpx.Response:
        """GET with exponential backoff; the last ``httpx.RequestError`` is re-raised."""
        for attempt in range(retries):
            try:
                return await self.get(url, **kwargs)
            except httpx.RequestError as e:
                if attempt == retries - 1:
                    raise
                wait_time = backoff * (2 ** attempt)
                logger.warning("GET %s failed (%s), retrying in %.1fs", url, e, wait_time)
                await asyncio.sleep(wait_time)
        raise ValueError("retries must be at least 1")

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
