"""Test utilities shared across the gleaner test suite.

This module provides in-memory stand-ins for the browser session and the
plain-fetch path, plus HTML builders for the game-review site used by the
extractor and engine tests.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from lxml import html as lxml_html

from gleaner.common.exceptions import (
    ContentTimeout,
    FetchFailure,
    HTMLStructuralAssumptionException,
    SessionClosedError,
    SessionUnusable,
)
from gleaner.data_types import CrawlRequest, ResolvedDocument

logger = logging.getLogger(__name__)

BASE_URL = "https://reviews.example.com"
LISTING_URL = f"{BASE_URL}/reviews"

NOT_FOUND_HTML = "<html><body><h1>Not Found</h1></body></html>"


def collect_results_async() -> tuple[
    Callable[[Any], Awaitable[None]], list[Any]
]:
    """Create an async callback that collects results in a list.

    Returns:
        A tuple of (async_callback_function, results_list).

    Example:
        callback, results = collect_results_async()
        engine = CrawlEngine(extractor, chain, on_data=callback)
        await engine.run()
        assert len(results) > 0
    """
    results: list[Any] = []

    async def callback(data: Any) -> None:
        results.append(data)

    return callback, results


# =============================================================================
# HTML builders
# =============================================================================


def review_card(href: str, title: str) -> str:
    return (
        f'<article class="review-card">'
        f'<a class="review-link" href="{href}">{title}</a>'
        f"</article>"
    )


def listing_chunk(ordinal: int, cards: list[tuple[str, str]]) -> str:
    """One infinite-scroll block: ``<section data-page="N">`` of cards."""
    body = "".join(review_card(href, title) for href, title in cards)
    return f'<section data-page="{ordinal}">{body}</section>'


def listing_page(chunks: list[str], load_more: bool = False) -> str:
    anchor = '<a class="load-more" href="#more">Load more</a>' if load_more else ""
    return f"<html><body>{''.join(chunks)}{anchor}</body></html>"


def review_page(
    title: str = "Halo Infinite",
    platforms: str | None = "PC, Xbox Series X",
    score: str | None = "8.5",
    reviewer: str | None = "Sam Lee",
    published: str | None = "2024-03-01",
    summary: str | None = "A strong return to form.",
    pros: tuple[str, ...] = ("Great movement",),
    cons: tuple[str, ...] = ("Thin campaign",),
    game_href: str | None = "/g/1",
) -> str:
    parts = [f"<h1>{title}</h1>"]
    if platforms is not None:
        parts.append(f'<p class="platforms">{platforms}</p>')
    if score is not None:
        parts.append(f'<div class="score">{score}</div>')
    if reviewer is not None:
        parts.append(f'<span class="reviewer">{reviewer}</span>')
    if published is not None:
        parts.append(
            f'<time class="published" datetime="{published}">{published}</time>'
        )
    if summary is not None:
        parts.append(f'<p class="summary">{summary}</p>')
    if pros:
        parts.append(
            '<ul class="pros">' + "".join(f"<li>{p}</li>" for p in pros) + "</ul>"
        )
    if cons:
        parts.append(
            '<ul class="cons">' + "".join(f"<li>{c}</li>" for c in cons) + "</ul>"
        )
    if game_href is not None:
        parts.append(f'<a class="game-link" href="{game_href}">Game page</a>')
    return f"<html><body>{''.join(parts)}</body></html>"


def game_page(tags: list[str]) -> str:
    items = "".join(f"<li>{tag}</li>" for tag in tags)
    return f'<html><body><h1>Game</h1><ul class="tags">{items}</ul></body></html>'


# =============================================================================
# Fakes
# =============================================================================


class FakeSession:
    """In-memory stand-in for BrowserSession.

    ``pages`` maps absolute URLs to static HTML. ``listings`` maps a URL to
    its infinite-scroll blocks: navigating shows the first block, each
    ``scroll_into_view`` of the load-more anchor reveals one more.

    Every interaction is appended to ``calls`` as a tuple, e.g.
    ``("navigate", url)``, ``("wait", selector)``, ``("scroll", selector)``.

    With ``latency`` set, each call sleeps before acting so concurrent
    workers get to run in between, as they do against a real browser.
    ``active`` and ``max_active`` count calls in flight at once.
    """

    def __init__(
        self,
        pages: dict[str, str] | None = None,
        listings: dict[str, list[str]] | None = None,
        unusable_urls: set[str] | None = None,
        missing_markers: set[str] | None = None,
        latency: float | None = None,
    ) -> None:
        self.pages = dict(pages or {})
        self.listings = {url: list(c) for url, c in (listings or {}).items()}
        self.unusable_urls = set(unusable_urls or ())
        self.missing_markers = set(missing_markers or ())
        self.calls: list[tuple[str, ...]] = []
        self.close_calls = 0
        self.closed = False
        self.latency = latency
        self.active = 0
        self.max_active = 0
        self._url = "about:blank"
        self._loaded = 0

    @property
    def current_url(self) -> str:
        return self._url

    def show_listing(self, url: str, loaded: int) -> None:
        """Put the session on ``url`` with ``loaded`` blocks rendered."""
        self._url = url
        self._loaded = loaded

    async def navigate(self, url: str) -> None:
        await self._interact("navigate", url)
        if url in self.unusable_urls:
            raise SessionUnusable("Browser connection lost", f"crashed on {url}")
        self._url = url
        self._loaded = 1 if url in self.listings else 0

    async def current_content(self) -> str:
        await self._interact()
        return self._render()

    async def wait_for_marker(self, selector: str, timeout_ms: int) -> None:
        await self._interact("wait", selector)
        tree = lxml_html.fromstring(self._render())
        if selector in self.missing_markers or not tree.cssselect(selector):
            raise ContentTimeout(selector, timeout_ms, self._url)

    async def scroll_into_view(self, selector: str) -> None:
        await self._interact("scroll", selector)
        tree = lxml_html.fromstring(self._render())
        if not tree.cssselect(selector):
            raise HTMLStructuralAssumptionException(
                selector=selector,
                selector_type="css",
                description="load-more anchor",
                expected_min=1,
                expected_max=None,
                actual_count=0,
                request_url=self._url,
            )
        if self._url in self.listings:
            self._loaded = min(self._loaded + 1, len(self.listings[self._url]))

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def navigations(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "navigate"]

    def waits(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "wait"]

    async def _interact(self, *call: str) -> None:
        if self.closed:
            raise SessionClosedError()
        if call:
            self.calls.append(call)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.latency is not None:
                await asyncio.sleep(self.latency)
        finally:
            self.active -= 1

    def _render(self) -> str:
        if self._url in self.listings:
            chunks = self.listings[self._url]
            return listing_page(
                chunks[: self._loaded], load_more=self._loaded < len(chunks)
            )
        return self.pages.get(self._url, NOT_FOUND_HTML)


class FakeFetcher:
    """In-memory plain-fetch path serving ``pages`` by absolute URL.

    Unknown URLs raise FetchFailure with a 404.
    """

    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = dict(pages or {})
        self.requests: list[CrawlRequest] = []
        self.close_calls = 0

    async def resolve_request(self, request: CrawlRequest) -> ResolvedDocument:
        self.requests.append(request)
        if request.url not in self.pages:
            raise FetchFailure(
                url=request.url, attempts=1, reason="HTTP 404", status_code=404
            )
        return ResolvedDocument(
            request=request, content=self.pages[request.url], url=request.url
        )

    async def close(self) -> None:
        self.close_calls += 1
