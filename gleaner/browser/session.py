"""The single live browser handle shared by every adapter in a run.

BrowserSession launches Playwright lazily on first use, exposes the few
page operations adapters need, and translates Playwright failures into
the crawl's error families:

- a wait that expires becomes ContentTimeout (local to one request)
- an action failing on a healthy browser becomes BrowserInteractionError
- any failure once the browser disconnected becomes SessionUnusable
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import (
    TimeoutError as PlaywrightTimeoutError,
)

from gleaner.common.exceptions import (
    BrowserInteractionError,
    ContentTimeout,
    HTMLStructuralAssumptionException,
    SessionClosedError,
    SessionUnusable,
)
from gleaner.settings import BrowserLaunchSettings

logger = logging.getLogger(__name__)


class BrowserSession:
    """Owns one Playwright browser, context and page.

    The session is owned by the AdapterChain, never by an adapter. Callers
    are responsible for mutual exclusion; the chain holds a lock around
    every adapter resolution.

    Example::

        async with BrowserSession.open(settings.browser) as session:
            await session.navigate("https://example.com/reviews")
            html = await session.current_content()
    """

    def __init__(
        self,
        settings: BrowserLaunchSettings | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        """Initialize an unlaunched session.

        Args:
            settings: Launch parameters; defaults apply when omitted.
            playwright_factory: Returns an object whose ``start()`` coroutine
                yields a Playwright instance.
        """
        self.settings = settings or BrowserLaunchSettings()
        self._playwright_factory = playwright_factory
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._closed = False
        self._launch_lock = asyncio.Lock()

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        settings: BrowserLaunchSettings | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> AsyncIterator[BrowserSession]:
        """Yield a session that is closed on exit, however the block ends."""
        session = cls(settings, playwright_factory)
        try:
            yield session
        finally:
            await session.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def launched(self) -> bool:
        return self._page is not None

    @property
    def current_url(self) -> str:
        self._ensure_open()
        if self._page is None:
            return "about:blank"
        return self._page.url

    async def acquire(self) -> Page:
        """Return the live page, launching the browser on first use.

        Raises:
            SessionClosedError: If the session was closed.
            SessionUnusable: If the browser cannot be launched.
        """
        self._ensure_open()
        if self._page is None:
            async with self._launch_lock:
                if self._page is None:
                    await self._launch()
        assert self._page is not None
        return self._page

    async def _launch(self) -> None:
        s = self.settings
        try:
            self._playwright = await self._playwright_factory().start()
            launcher = getattr(self._playwright, s.browser_type)
            self._browser = await launcher.launch(headless=s.headless)

            context_kwargs: dict[str, Any] = {"viewport": s.viewport}
            if s.user_agent:
                context_kwargs["user_agent"] = s.user_agent
            if s.locale:
                context_kwargs["locale"] = s.locale
            if s.timezone_id:
                context_kwargs["timezone_id"] = s.timezone_id
            self._context = await self._browser.new_context(**context_kwargs)
            self._context.set_default_navigation_timeout(
                s.navigation_timeout_ms
            )
            self._page = await self._context.new_page()
        except PlaywrightError as e:
            logger.error(f"Browser launch failed: {e}")
            await self.close()
            raise SessionUnusable("Browser launch failed", str(e)) from e

        logger.info(
            f"Launched {s.browser_type} browser (headless={s.headless})"
        )

    async def navigate(self, url: str) -> None:
        """Navigate the page and wait for DOMContentLoaded."""
        page = await self.acquire()
        logger.debug(f"Navigating to {url}")
        try:
            await page.goto(url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            raise self._translate(e, "navigation", url) from e

    async def current_content(self) -> str:
        """Snapshot the rendered DOM."""
        page = await self.acquire()
        try:
            return await page.content()
        except PlaywrightError as e:
            raise self._translate(e, "snapshot", page.url) from e

    async def wait_for_marker(self, selector: str, timeout_ms: int) -> None:
        """Block until ``selector`` matches an element, or ``timeout_ms`` expires.

        Raises:
            ContentTimeout: If the marker never appeared.
        """
        page = await self.acquire()
        try:
            await page.wait_for_selector(
                selector, state="attached", timeout=timeout_ms
            )
        except PlaywrightTimeoutError as e:
            raise ContentTimeout(selector, timeout_ms, page.url) from e
        except PlaywrightError as e:
            raise self._translate(e, "wait", page.url) from e

    async def scroll_into_view(self, selector: str) -> None:
        """Scroll the first element matching ``selector`` into view.

        Raises:
            HTMLStructuralAssumptionException: If no element matches.
        """
        page = await self.acquire()
        try:
            element = await page.query_selector(selector)
            if element is None:
                raise HTMLStructuralAssumptionException(
                    selector=selector,
                    selector_type="css",
                    description="load-more anchor",
                    expected_min=1,
                    expected_max=None,
                    actual_count=0,
                    request_url=page.url,
                )
            await element.scroll_into_view_if_needed()
        except PlaywrightError as e:
            raise self._translate(e, "scroll", page.url) from e

    def _translate(
        self, error: PlaywrightError, action: str, url: str
    ) -> Exception:
        if self._browser is None or not self._browser.is_connected():
            logger.error(f"Browser connection lost during {action}: {error}")
            return SessionUnusable("Browser connection lost", str(error))
        if self._page is not None and self._page.is_closed():
            logger.error(f"Browser page closed during {action}: {error}")
            return SessionUnusable("Browser page closed", str(error))
        return BrowserInteractionError(action, url, str(error))

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError()

    async def close(self) -> None:
        """Release the page, context, browser and Playwright driver.

        Safe to call more than once; only the first call does work. Any
        later operation on the session raises SessionClosedError.
        """
        if self._closed:
            return
        self._closed = True

        for name, resource in (
            ("page", self._page),
            ("context", self._context),
            ("browser", self._browser),
        ):
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser {name}: {e}")

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.warning(f"Error stopping Playwright: {e}")

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        logger.info("Browser session closed")
