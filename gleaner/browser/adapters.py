"""Automation adapters: strategies that resolve tagged requests in the browser.

An adapter answers to exactly one AdapterTag. The chain hands it a request
only when ``claims(request)`` is true, together with the shared
BrowserSession and the adapter's own AdapterState. State is owned by the
chain so no adapter keeps hidden module-level flags.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from lxml import html as lxml_html
from lxml.html import HtmlElement

from gleaner.browser.session import BrowserSession
from gleaner.data_types import AdapterTag, CrawlRequest, ResolvedDocument
from gleaner.settings import DelaySettings, ScrollSettings

logger = logging.getLogger(__name__)


@dataclass
class AdapterState:
    """Interaction history of one adapter on the shared session.

    Mutated only by its adapter, only while the chain holds the session lock.

    ``cursor`` is the last pagination ordinal observed on any listing;
    ``cursors`` holds the last ordinal per listing URL.
    """

    first_interaction: bool = True
    cursor: int | None = None
    cursors: dict[str, int] = field(default_factory=dict)

    @classmethod
    def at_page(cls, listing: str, cursor: int) -> AdapterState:
        """State of an adapter that has loaded ``listing`` up to ``cursor``."""
        state = cls()
        state.record(listing, cursor)
        state.first_interaction = False
        return state

    def record(self, listing: str, cursor: int) -> None:
        self.cursors[listing] = cursor
        self.cursor = cursor


class AutomationAdapter(Protocol):
    """What the AdapterChain requires of an adapter."""

    tag: AdapterTag

    def claims(self, request: CrawlRequest) -> bool: ...

    async def resolve(
        self,
        request: CrawlRequest,
        session: BrowserSession,
        state: AdapterState,
    ) -> ResolvedDocument: ...


class TaggedAdapter:
    """Shared ``claims`` implementation: exact tag equality."""

    tag: AdapterTag

    def claims(self, request: CrawlRequest) -> bool:
        return request.adapter is not None and request.adapter == self.tag

    async def snapshot(
        self, request: CrawlRequest, session: BrowserSession
    ) -> ResolvedDocument:
        content = await session.current_content()
        return ResolvedDocument(
            request=request,
            content=content,
            url=session.current_url,
            via=self.tag,
        )


class DelayThenLoadAdapter(TaggedAdapter):
    """Sleeps a uniform random delay, then navigates and snapshots.

    Stateless across calls apart from the shared session.
    """

    def __init__(
        self,
        settings: DelaySettings | None = None,
        tag: AdapterTag = AdapterTag.DELAY_LOAD,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or DelaySettings()
        self.tag = tag
        self._rng = rng or random.Random()
        self._sleep = sleep

    def next_delay(self) -> float:
        return self._rng.uniform(
            self.settings.min_seconds, self.settings.max_seconds
        )

    async def resolve(
        self,
        request: CrawlRequest,
        session: BrowserSession,
        state: AdapterState,
    ) -> ResolvedDocument:
        delay = self.next_delay()
        logger.debug(f"Sleeping {delay:.2f}s before loading {request.url}")
        await self._sleep(delay)
        await session.navigate(request.url)
        state.first_interaction = False
        return await self.snapshot(request, session)


class ScrollPaginationAdapter(TaggedAdapter):
    """Drives infinite-scroll listings on the shared page.

    A non-continuation request, or a continuation for a listing this
    adapter has not loaded, navigates and waits for the initial marker.
    A continuation for a loaded listing reads the last page ordinal from
    the live document, scrolls the load-more anchor into view and waits
    for the marker of the next ordinal. It does not re-navigate while the
    session still shows that listing.

    Cursors are kept per listing URL. When another listing or another
    adapter has taken over the shared session, the listing is restored
    first by loading it again and replaying the scrolls up to its cursor.
    """

    def __init__(
        self,
        settings: ScrollSettings | None = None,
        tag: AdapterTag = AdapterTag.SCROLL_PAGINATION,
    ) -> None:
        self.settings = settings or ScrollSettings()
        self.tag = tag

    def continuation_marker(self, ordinal: int) -> str:
        return self.settings.continuation_marker.format(ordinal=ordinal)

    def extract_cursor(self, content: str) -> int | None:
        """Read the last rendered page ordinal, or None if absent."""
        if not content.strip():
            return None
        results = lxml_html.fromstring(content).xpath(self.settings.cursor_xpath)
        if not isinstance(results, list):
            results = [results]
        for value in reversed(results):
            if isinstance(value, HtmlElement):
                text = value.text_content()
            else:
                text = str(value)
            try:
                return int(text.strip())
            except ValueError:
                continue
        return None

    async def resolve(
        self,
        request: CrawlRequest,
        session: BrowserSession,
        state: AdapterState,
    ) -> ResolvedDocument:
        if not request.is_continuation or request.url not in state.cursors:
            return await self._first_page(request, session, state)
        return await self._next_page(request, session, state)

    async def _first_page(
        self,
        request: CrawlRequest,
        session: BrowserSession,
        state: AdapterState,
    ) -> ResolvedDocument:
        state.cursors.pop(request.url, None)
        await session.navigate(request.url)
        await session.wait_for_marker(
            self.settings.initial_marker, self.settings.timeout_ms
        )
        document = await self.snapshot(request, session)
        cursor = self.extract_cursor(document.content) or 1
        # Continuations are addressed to the URL the listing settled on
        state.record(document.url, cursor)
        state.first_interaction = False
        logger.debug(f"Initial listing content rendered for {request.url}")
        return document

    async def _next_page(
        self,
        request: CrawlRequest,
        session: BrowserSession,
        state: AdapterState,
    ) -> ResolvedDocument:
        listing = request.url
        cursor = state.cursors[listing]
        if session.current_url != listing:
            await self._restore(session, listing, cursor)

        observed = self.extract_cursor(await session.current_content())
        ordinal = (observed if observed is not None else cursor) + 1

        await self._load_ordinal(session, ordinal)
        state.record(listing, ordinal)
        logger.debug(f"Listing page {ordinal} rendered on {listing}")
        return await self.snapshot(request, session)

    async def _load_ordinal(self, session: BrowserSession, ordinal: int) -> None:
        await session.scroll_into_view(self.settings.load_more_selector)
        await session.wait_for_marker(
            self.continuation_marker(ordinal), self.settings.timeout_ms
        )

    async def _restore(
        self, session: BrowserSession, listing: str, cursor: int
    ) -> None:
        """Reload ``listing`` and scroll back to page ``cursor``."""
        logger.info(
            f"Session moved to {session.current_url}, "
            f"restoring {listing} to page {cursor}"
        )
        await session.navigate(listing)
        await session.wait_for_marker(
            self.settings.initial_marker, self.settings.timeout_ms
        )
        loaded = self.extract_cursor(await session.current_content()) or 1
        for ordinal in range(loaded + 1, cursor + 1):
            await self._load_ordinal(session, ordinal)
