"""Templated multi-hop extraction.

PageExtractor turns three engine-facing callbacks (``parse_listing``,
``parse_hop1``, ``parse_hop2``) into a per-entity state machine::

    LISTING_SCAN -> HOP1_PENDING -> HOP2_PENDING -> COMPLETE
                         |               |
                         +-> DISCARDED <-+

Site subclasses implement four pure hooks over ResolvedDocuments:

- ``extract_listing_urls(document)`` -> [(entity_url, seed_fields), ...]
- ``extract_hop1(document, entity)`` -> Hop1Result, or None to discard
- ``extract_hop2(document, entity)`` -> remaining fields
- ``request_next_listing_page(document)`` -> CrawlRequest or None

The correlation key (the entity URL resolved against its listing) travels
in ``metadata["entity_key"]`` on both hop requests. The emitted ``locator``
keeps the link as it appeared on the listing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar
from urllib.parse import urljoin

from gleaner.common.data_models import Review, ScrapedData
from gleaner.common.exceptions import ScraperAssumptionException
from gleaner.data_types import (
    AdapterTag,
    BaseExtractor,
    CrawlRequest,
    ExtractorGenerator,
    ParsedData,
    ResolvedDocument,
)
from gleaner.pending import PendingEntities, PendingEntity

logger = logging.getLogger(__name__)

ENTITY_KEY = "entity_key"


class Hop2FailurePolicy(str, Enum):
    """What to do when hop 2 cannot produce its fields.

    DISCARD drops the entity. EMIT_PARTIAL emits it with the fields
    gathered so far and lets validation decide.
    """

    DISCARD = "discard"
    EMIT_PARTIAL = "emit_partial"


@dataclass(frozen=True)
class Hop1Result:
    """Fields parsed at hop 1 and the request for hop 2.

    ``follow_up`` of None completes the entity without a second hop.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    follow_up: CrawlRequest | None = None


class PageExtractor(BaseExtractor[Any]):
    """Base class for two-hop listing extractors.

    Class Attributes:
        hop1_adapter: Adapter tag for entity pages.
        hop2_adapter: Adapter tag for the secondary pages.
        entity_model: ScrapedData subclass completed entities validate against.
        hop2_failure_policy: Handling of hop-2 extraction failures.
    """

    listing_adapter: ClassVar[AdapterTag | None] = AdapterTag.SCROLL_PAGINATION
    hop1_adapter: ClassVar[AdapterTag | None] = AdapterTag.DELAY_LOAD
    hop2_adapter: ClassVar[AdapterTag | None] = AdapterTag.DELAY_LOAD
    entity_model: ClassVar[type[ScrapedData]] = Review
    hop2_failure_policy: Hop2FailurePolicy = Hop2FailurePolicy.DISCARD

    def __init__(
        self, hop2_failure_policy: Hop2FailurePolicy | None = None
    ) -> None:
        self.pending = PendingEntities()
        # Scroll snapshots repeat earlier pages. Links already scanned, per
        # listing URL, dropped once the listing is exhausted.
        self._seen: dict[str, set[str]] = {}
        if hop2_failure_policy is not None:
            self.hop2_failure_policy = hop2_failure_policy

    # ------------------------------------------------------------------
    # Site hooks
    # ------------------------------------------------------------------

    def extract_listing_urls(
        self, document: ResolvedDocument
    ) -> Iterable[tuple[str, dict[str, Any]]]:
        raise NotImplementedError

    def extract_hop1(
        self, document: ResolvedDocument, entity: PendingEntity
    ) -> Hop1Result | None:
        raise NotImplementedError

    def extract_hop2(
        self, document: ResolvedDocument, entity: PendingEntity
    ) -> dict[str, Any]:
        raise NotImplementedError

    def request_next_listing_page(
        self, document: ResolvedDocument
    ) -> CrawlRequest | None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Request builders for subclasses
    # ------------------------------------------------------------------

    def hop2_request(self, url: str, entity: PendingEntity) -> CrawlRequest:
        return CrawlRequest(
            url=url,
            callback=self.parse_hop2,
            adapter=self.hop2_adapter,
            metadata={ENTITY_KEY: entity.key},
            is_continuation=True,
        )

    def next_listing_request(self, document: ResolvedDocument) -> CrawlRequest:
        """Continuation that asks the listing adapter for one more page.

        Each page is queued ahead of the hop requests it produced, so the
        listing is exhausted before the session navigates away from it.
        """
        return CrawlRequest(
            url=document.url,
            callback=self.parse_listing,
            adapter=self.listing_adapter,
            is_continuation=True,
            priority=max(document.request.priority - 1, 0),
        )

    # ------------------------------------------------------------------
    # Engine-facing callbacks
    # ------------------------------------------------------------------

    def parse_listing(self, document: ResolvedDocument) -> ExtractorGenerator:
        """Open one pending entity and one hop-1 request per listed URL."""
        seen = self._seen.setdefault(document.url, set())
        scheduled = 0
        for href, seed in self.extract_listing_urls(document):
            if href in seen:
                continue
            seen.add(href)
            key = urljoin(document.url, href)
            if not self.pending.open(key, seed, locator=href):
                continue
            scheduled += 1
            yield CrawlRequest(
                url=key,
                callback=self.parse_hop1,
                adapter=self.hop1_adapter,
                metadata={ENTITY_KEY: key},
                is_continuation=True,
            )
        logger.info(f"Listing {document.url}: {scheduled} new entities")

        next_page = self.request_next_listing_page(document)
        if next_page is None:
            self._seen.pop(document.url, None)
            return
        yield next_page

    def parse_hop1(self, document: ResolvedDocument) -> ExtractorGenerator:
        key, entity = self._entity_for(document)
        if entity is None:
            return

        try:
            result = self.extract_hop1(document, entity)
        except ScraperAssumptionException as e:
            self.pending.discard(key, e.message)
            return

        if result is None:
            self.pending.discard(key, "rejected at hop 1")
            return

        if result.follow_up is None:
            yield self._emit(entity, document, result.fields)
            return

        self.pending.advance(key, result.fields)
        follow_up = result.follow_up
        if follow_up.metadata.get(ENTITY_KEY) != key:
            follow_up = replace(
                follow_up, metadata={**follow_up.metadata, ENTITY_KEY: key}
            )
        yield follow_up

    def parse_hop2(self, document: ResolvedDocument) -> ExtractorGenerator:
        key, entity = self._entity_for(document)
        if entity is None:
            return

        try:
            fields = self.extract_hop2(document, entity)
        except ScraperAssumptionException as e:
            if self.hop2_failure_policy is Hop2FailurePolicy.DISCARD:
                self.pending.discard(key, e.message)
                return
            logger.info(f"Emitting {key} without hop-2 fields: {e.message}")
            fields = {}

        yield self._emit(entity, document, fields)

    def on_chain_failed(self, request: CrawlRequest, error: Exception) -> None:
        """Discard the entity owned by a failed request, if any.

        A failed listing request ends that listing, so its scanned links
        are forgotten.
        """
        key = request.metadata.get(ENTITY_KEY)
        if key is None:
            self._seen.pop(request.url, None)
            return
        self.pending.discard(key, f"{type(error).__name__}: {error}")

    # ------------------------------------------------------------------

    def _entity_for(
        self, document: ResolvedDocument
    ) -> tuple[str, PendingEntity | None]:
        key = document.request.metadata.get(ENTITY_KEY, "")
        entity = self.pending.get(key)
        if entity is None:
            logger.warning(
                f"No pending entity for key {key!r} ({document.url})"
            )
        return key, entity

    def _emit(
        self,
        entity: PendingEntity,
        document: ResolvedDocument,
        fields: dict[str, Any],
    ) -> ParsedData:
        data = self.pending.complete(entity.key, fields)
        data["locator"] = entity.locator
        return ParsedData(
            self.entity_model.raw(request_url=document.url, **data)
        )
