"""
Network fetchers.

The interceptor only needs an async callable Request -> Response. Timeouts
belong to the transport: HttpxFetcher relies on the httpx client's own
timeout configuration and never adds one.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx

from warmcache.exceptions import NetworkError
from warmcache.logging import get_logger
from warmcache.types import Request, Response

logger = get_logger(__name__)

Fetcher = Callable[[Request], Awaitable[Response]]


class HttpxFetcher:
    """Fetcher backed by httpx.AsyncClient.

    Transport failures (connection refused, DNS, timeouts) become
    NetworkError. HTTP error statuses are returned as responses.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def __call__(self, request: Request) -> Response:
        try:
            resp = await self.client.request(
                request.method, request.url, headers=request.headers or None
            )
        except httpx.HTTPError as e:
            logger.debug("Network fetch failed", url=request.url, error=str(e))
            raise NetworkError(
                f"Fetch failed: {e.__class__.__name__}",
                context={"url": request.url, "method": request.method},
            ) from e

        return Response(
            url=str(resp.url),
            status=resp.status_code,
            headers=dict(resp.headers),
            body=resp.content,
        )

    async def close(self) -> None:
        """Close the client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
