"""Dispatch of requests to adapters by declared intent."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from gleaner.browser.adapters import (
    AdapterState,
    AutomationAdapter,
    DelayThenLoadAdapter,
    ScrollPaginationAdapter,
)
from gleaner.browser.session import BrowserSession
from gleaner.common.exceptions import AdapterNotConfigured
from gleaner.data_types import AdapterTag, CrawlRequest, ResolvedDocument
from gleaner.settings import CrawlSettings

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    """The plain-fetch path: AsyncRequestManager satisfies this."""

    async def resolve_request(
        self, request: CrawlRequest
    ) -> ResolvedDocument: ...

    async def close(self) -> None: ...


class AdapterChain:
    """Resolves each request through exactly one adapter or the fetcher.

    Adapters are tried in the configured order and the first one claiming
    the request resolves it. Untagged requests go to the plain-fetch path.
    A tagged request that no adapter claims fails with AdapterNotConfigured;
    it is never fetched without the browser.

    Every adapter call runs under one lock, so no two browser interactions
    are in flight against the session at once. Plain fetches do not take
    the lock and may run concurrently.
    """

    def __init__(
        self,
        adapters: Sequence[AutomationAdapter],
        session: BrowserSession,
        fetcher: Fetcher,
    ) -> None:
        tags = [adapter.tag for adapter in adapters]
        duplicates = {tag for tag in tags if tags.count(tag) > 1}
        if duplicates:
            raise ValueError(
                "Adapter tags must be unique, duplicated: "
                + ", ".join(sorted(str(tag.value) for tag in duplicates))
            )
        self.adapters = list(adapters)
        self.session = session
        self.fetcher = fetcher
        self.states: dict[AdapterTag, AdapterState] = {
            tag: AdapterState() for tag in tags
        }
        self._session_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: CrawlSettings,
        session: BrowserSession,
        fetcher: Fetcher,
    ) -> AdapterChain:
        """Build the adapters named by ``settings`` in ``adapter_order``."""
        by_tag: dict[AdapterTag, AutomationAdapter] = {
            settings.adapters["delay_load"]: DelayThenLoadAdapter(
                settings.delay, tag=settings.adapters["delay_load"]
            ),
            settings.adapters["scroll_pagination"]: ScrollPaginationAdapter(
                settings.scroll, tag=settings.adapters["scroll_pagination"]
            ),
        }
        ordered = [by_tag[tag] for tag in settings.adapter_order if tag in by_tag]
        return cls(ordered, session, fetcher)

    @property
    def browser_busy(self) -> bool:
        """True while an adapter is mid-interaction with the session."""
        return self._session_lock.locked()

    def adapter_for(self, request: CrawlRequest) -> AutomationAdapter | None:
        """Return the first adapter claiming ``request``, or None."""
        for adapter in self.adapters:
            if adapter.claims(request):
                return adapter
        return None

    async def resolve(self, request: CrawlRequest) -> ResolvedDocument:
        """Resolve ``request`` into a document.

        Raises:
            AdapterNotConfigured: If the request is tagged but unclaimed.
            SessionUnusable: If the browser died during the interaction.
            ContentTimeout: If an adapter's bounded wait expired.
            FetchFailure: If the plain-fetch path gave up.
        """
        adapter = self.adapter_for(request)
        if adapter is None:
            if request.adapter is not None:
                raise AdapterNotConfigured(request.adapter.value, request.url)
            logger.debug(f"Plain fetch: {request.url}")
            return await self.fetcher.resolve_request(request)

        async with self._session_lock:
            logger.debug(f"Resolving {request.url} via {adapter.tag.value}")
            return await adapter.resolve(
                request, self.session, self.states[adapter.tag]
            )

    async def close(self) -> None:
        """Close the browser session and the fetcher."""
        try:
            await self.session.close()
        finally:
            await self.fetcher.close()
