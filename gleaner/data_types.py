"""Data types for the extractor-engine architecture.

This module defines the core data types passed between extractors, the
adapter chain and the crawl engine. These types are designed to be:

1. Exhaustive - callback yields are matched with Python 3.10's match statement
2. Serializable - callbacks are named by string, not function references
3. Immutable - frozen dataclasses; metadata is deep-copied on construction

A CrawlRequest names the callback that receives its ResolvedDocument and,
optionally, the adapter that must resolve it. Untagged requests take the
plain-fetch path.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from copy import deepcopy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar, cast
from urllib.parse import quote, unquote, urljoin, urlparse, urlunparse

T = TypeVar("T")
ExtractorReturnType = TypeVar("ExtractorReturnType")


class AdapterTag(str, Enum):
    """Identity an automation adapter answers to.

    A request carrying a tag is resolved only by the adapter declaring the
    same tag; requests without a tag go to the plain-fetch path.
    """

    DELAY_LOAD = "delay_load"
    SCROLL_PAGINATION = "scroll_pagination"


def _normalize_url(url: str) -> str:
    """Re-encode path and query so joined URLs are never double-encoded."""
    parsed = urlparse(url)
    encoded_path = quote(unquote(parsed.path), safe="/")
    encoded_query = quote(unquote(parsed.query), safe="=&")
    return urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            encoded_path,
            parsed.params,
            encoded_query,
            parsed.fragment,
        )
    )


@dataclass(frozen=True)
class CrawlRequest:
    """A unit of work for the crawl engine.

    Attributes:
        url: Target locator. May be relative inside a callback; the engine
            resolves it against the document that produced it.
        callback: Name of the extractor method that receives the resolved
            document. A bound method is accepted and stored by name.
        adapter: Tag of the adapter that must resolve this request, or None
            for the plain-fetch path.
        metadata: Opaque mapping carried unmodified to the callback.
        is_continuation: True for next-page and next-hop requests.
        priority: Queue ordering hint (lower = earlier). Equal priorities
            are served FIFO.
        headers: Extra HTTP headers for the plain-fetch path.
    """

    url: str
    callback: str | Callable[..., Any]
    adapter: AdapterTag | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    is_continuation: bool = False
    priority: int = 9
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        """Deep copy metadata and resolve callable callbacks to their names.

        Sibling requests yielded from one callback often share a metadata
        dict; without the copy a mutation in one chain leaks into the other.
        """
        object.__setattr__(self, "metadata", deepcopy(self.metadata))
        if callable(self.callback) and not isinstance(self.callback, str):
            object.__setattr__(self, "callback", self.callback.__name__)

    @property
    def callback_name(self) -> str:
        return cast(str, self.callback)

    @property
    def is_browser_routed(self) -> bool:
        return self.adapter is not None

    def resolve_from(self, document: ResolvedDocument) -> CrawlRequest:
        """Return a copy whose URL is absolute relative to ``document``.

        Absolute URLs are returned unchanged; relative ones are joined
        against the document's final URL.

        Args:
            document: The document whose callback produced this request.

        Returns:
            A new CrawlRequest with the resolved URL.
        """
        return replace(self, url=urljoin(document.url, _normalize_url(self.url)))


@dataclass(frozen=True)
class ResolvedDocument:
    """A fetched or rendered document.

    Attributes:
        request: The CrawlRequest this document answers.
        content: Rendered HTML (browser) or decoded body (plain fetch).
        url: Final locator; may differ from the request after client-side
            navigation or redirects.
        status_code: HTTP status for plain fetches; 200 for browser snapshots.
        via: Tag of the adapter that produced the document, None for plain fetch.
    """

    request: CrawlRequest
    content: str
    url: str
    status_code: int = 200
    via: AdapterTag | None = None


@dataclass(frozen=True)
class ParsedData(Generic[T]):
    """Completed entity yielded by an extractor callback.

    Wrapping lets the engine distinguish entities from follow-up requests
    with exhaustive pattern matching.

    Example:
        yield ParsedData(Review.raw(title="...", locator="/r/1", ...))
    """

    data: T
    __match_args__ = ("data",)

    def unwrap(self) -> T:
        return self.data


# A callback can yield ParsedData, CrawlRequest, or None.
ExtractorYield = ParsedData[T] | CrawlRequest | None

# What callback methods return. The send type is unused.
ExtractorGenerator = Generator[ExtractorYield[T], None, None]


class BaseExtractor(Generic[ExtractorReturnType]):
    """Base class for all extractors.

    Extractors are pure with respect to I/O: callbacks receive a
    ResolvedDocument and yield ParsedData or further CrawlRequests. The
    engine owns fetching, queueing and persistence.

    Class Attributes:
        start_urls: Listing pages that seed the crawl.
        listing_adapter: Adapter tag used for the seed requests.
        entry_callback: Callback that receives the seed documents.
    """

    start_urls: ClassVar[list[str]] = []
    listing_adapter: ClassVar[AdapterTag | None] = None
    entry_callback: ClassVar[str] = "parse_listing"

    def get_entry(self) -> Generator[CrawlRequest, None, None]:
        """Create the initial request(s) to start crawling.

        Yields:
            One CrawlRequest per start URL.
        """
        if not self.start_urls:
            raise NotImplementedError(
                f"{self.__class__.__name__} must declare start_urls "
                f"or override get_entry()"
            )
        for url in self.start_urls:
            yield CrawlRequest(
                url=url,
                callback=self.entry_callback,
                adapter=self.listing_adapter,
            )

    def get_callback(
        self, name: str
    ) -> Callable[[ResolvedDocument], ExtractorGenerator[ExtractorReturnType]]:
        """Resolve a callback name to the bound method.

        Args:
            name: The name of the callback method.

        Returns:
            The bound method, called with a ResolvedDocument.

        Raises:
            AttributeError: If the callback method doesn't exist.
        """
        method = getattr(self, name)
        return cast(
            Callable[
                [ResolvedDocument], ExtractorGenerator[ExtractorReturnType]
            ],
            method,
        )

    def on_chain_failed(self, request: CrawlRequest, error: Exception) -> None:
        """Hook invoked when a request's chain fails before its callback ran.

        The default does nothing; extractors holding per-chain state
        override it to release that state.
        """
