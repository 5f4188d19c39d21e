"""Plain-fetch path for requests that carry no adapter tag.

AsyncRequestManager owns the httpx.AsyncClient, an optional
pyrate_limiter Limiter and the retry policy. It turns a CrawlRequest into
a ResolvedDocument or raises FetchFailure once retries are exhausted.

The retry delay uses exponential backoff::

    delay = base_delay * 2 ** attempt, capped at max_delay

Timeouts, transport errors and 5xx responses are retried; 4xx responses
fail immediately since repeating them cannot help.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pyrate_limiter import Limiter

from gleaner.common.exceptions import FetchFailure, RequestTimeoutException
from gleaner.data_types import CrawlRequest, ResolvedDocument

logger = logging.getLogger(__name__)


class AsyncRequestManager:
    """Fetches untagged requests over HTTP.

    Example::

        async with AsyncRequestManager(timeout=30.0, max_attempts=3) as manager:
            document = await manager.resolve_request(request)
    """

    def __init__(
        self,
        timeout: float | None = 30.0,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        limiter: Limiter | None = None,
        ssl_context: ssl.SSLContext | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the request manager.

        Args:
            timeout: Request timeout in seconds. None means no timeout.
            max_attempts: Total attempts per request, including the first.
            base_delay: Base delay for exponential backoff.
            max_delay: Cap on a single backoff delay.
            limiter: Optional pyrate_limiter Limiter acquired before each attempt.
            ssl_context: Optional SSL context for HTTPS connections.
            headers: Default headers sent with every request.
            transport: Optional httpx transport (tests use MockTransport).
            sleep: Coroutine used for backoff waits.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._limiter = limiter
        self._sleep = sleep

        client_kwargs: dict[str, Any] = {
            "timeout": timeout,
            "headers": headers,
            "follow_redirects": True,
        }
        if ssl_context:
            client_kwargs["verify"] = ssl_context
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncRequestManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    async def resolve_request(self, request: CrawlRequest) -> ResolvedDocument:
        """Fetch ``request.url`` with retries.

        Raises:
            FetchFailure: If every attempt failed or a 4xx was returned.
        """
        last_reason = ""
        last_status: int | None = None

        for attempt in range(self.max_attempts):
            if attempt:
                delay = self.backoff_delay(attempt - 1)
                logger.info(
                    f"Retrying {request.url} (attempt {attempt + 1}/"
                    f"{self.max_attempts}) in {delay:.2f}s: {last_reason}"
                )
                await self._sleep(delay)

            try:
                return await self._fetch_once(request)
            except RequestTimeoutException as e:
                last_reason = e.message
                last_status = None
            except httpx.TransportError as e:
                last_reason = f"{type(e).__name__}: {e}"
                last_status = None
            except httpx.HTTPStatusError as e:
                last_status = e.response.status_code
                last_reason = f"HTTP {last_status}"
                if last_status < 500:
                    raise FetchFailure(
                        url=request.url,
                        attempts=attempt + 1,
                        reason=last_reason,
                        status_code=last_status,
                    ) from e

        raise FetchFailure(
            url=request.url,
            attempts=self.max_attempts,
            reason=last_reason,
            status_code=last_status,
        )

    async def _fetch_once(self, request: CrawlRequest) -> ResolvedDocument:
        if self._limiter is not None:
            await self._limiter.try_acquire_async(name="fetch", weight=1)

        try:
            http_response = await self._client.get(
                request.url, headers=request.headers
            )
        except httpx.TimeoutException:
            raise RequestTimeoutException(
                url=request.url, timeout_seconds=self.timeout
            )

        if http_response.status_code >= 400:
            http_response.raise_for_status()

        return ResolvedDocument(
            request=request,
            content=http_response.text,
            url=str(http_response.url),
            status_code=http_response.status_code,
        )
