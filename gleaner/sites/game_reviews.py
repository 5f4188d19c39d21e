"""Extractor for a game-review site with an infinite-scroll listing.

The site serves three kinds of pages:

1. Listing (``/reviews``): review cards rendered client-side in
   ``<section data-page="N">`` blocks; a ``a.load-more`` anchor triggers
   the next block and disappears on the last one.
2. Review page (``/r/{id}``): title, platforms, score, reviewer, date,
   summary, pros/cons and a link to the game page.
3. Game page (``/g/{id}``): genre tags.

A review without a parseable platform or score is discarded at hop 1.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from gleaner.common.checked_html import CheckedHtmlElement, parse_document
from gleaner.common.exceptions import RequiredFieldMissing
from gleaner.common.parsing import (
    parse_date,
    parse_score,
    require_text,
    split_labels,
)
from gleaner.data_types import CrawlRequest, ResolvedDocument
from gleaner.extractor import Hop1Result, Hop2FailurePolicy, PageExtractor
from gleaner.pending import PendingEntity

logger = logging.getLogger(__name__)

CARD_XPATH = "//article[contains(concat(' ', normalize-space(@class), ' '), ' review-card ')]"
LOAD_MORE_XPATH = "//a[contains(@class, 'load-more')]"


def _list_items(tree: CheckedHtmlElement, xpath: str, description: str) -> list[str]:
    items = tree.checked_xpath(xpath, description, min_count=0)
    return [
        text
        for text in (item.text_content().strip() for item in items)
        if text
    ]


class GameReviewExtractor(PageExtractor):
    """Two-hop extractor: listing -> review page -> game page."""

    start_urls = ["https://reviews.example.com/reviews"]

    def __init__(
        self,
        start_urls: list[str] | None = None,
        max_listing_pages: int | None = None,
        hop2_failure_policy: Hop2FailurePolicy | None = None,
    ) -> None:
        super().__init__(hop2_failure_policy)
        if start_urls is not None:
            self.start_urls = list(start_urls)
        self.max_listing_pages = max_listing_pages
        self._listing_pages_seen = 0

    def extract_listing_urls(
        self, document: ResolvedDocument
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        tree = parse_document(document.content, document.url)
        for card in tree.checked_xpath(CARD_XPATH, "review cards", min_count=0):
            hrefs = card.checked_xpath(
                ".//a[contains(@class, 'review-link')]/@href",
                "review link",
                min_count=0,
                max_count=1,
                type=str,
            )
            if not hrefs:
                logger.debug(f"Review card without link on {document.url}")
                continue
            seed: dict[str, Any] = {}
            title = card.text_of(".//a[contains(@class, 'review-link')]", "title")
            if title:
                seed["title"] = title
            yield hrefs[0].strip(), seed

    def extract_hop1(
        self, document: ResolvedDocument, entity: PendingEntity
    ) -> Hop1Result | None:
        tree = parse_document(document.content, document.url)
        url = document.url

        platforms = split_labels(
            tree.text_of("//*[contains(@class, 'platforms')]", "platforms")
        )
        if not platforms:
            raise RequiredFieldMissing("platforms", url)

        fields: dict[str, Any] = {
            "platforms": platforms,
            "score": parse_score(
                tree.text_of("//*[contains(@class, 'score')]", "score"),
                request_url=url,
            ),
            "reviewer": tree.text_of(
                "//*[contains(@class, 'reviewer')]", "reviewer"
            ),
            "summary": tree.text_of(
                "//*[contains(@class, 'summary')]", "summary"
            ),
            "pros": _list_items(tree, "//ul[contains(@class, 'pros')]/li", "pros"),
            "cons": _list_items(tree, "//ul[contains(@class, 'cons')]/li", "cons"),
        }

        if "title" not in entity.fields:
            fields["title"] = require_text(
                tree.text_of("//h1", "review title"), "title", url
            )

        published = tree.checked_xpath(
            "//time[contains(@class, 'published')]",
            "publication date",
            min_count=0,
            max_count=1,
        )
        if published:
            raw = published[0].get("datetime") or published[0].text_content()
            fields["published"] = parse_date(raw, request_url=url)

        game_links = tree.checked_xpath(
            "//a[contains(@class, 'game-link')]/@href",
            "game link",
            min_count=0,
            max_count=1,
            type=str,
        )
        if not game_links:
            return Hop1Result(fields=fields)
        return Hop1Result(
            fields=fields,
            follow_up=self.hop2_request(game_links[0].strip(), entity),
        )

    def extract_hop2(
        self, document: ResolvedDocument, entity: PendingEntity
    ) -> dict[str, Any]:
        tree = parse_document(document.content, document.url)
        tags = tree.checked_xpath(
            "//ul[contains(@class, 'tags')]/li", "genre tags", min_count=1
        )
        return {"tags": [tag.text_content().strip() for tag in tags]}

    def request_next_listing_page(
        self, document: ResolvedDocument
    ) -> CrawlRequest | None:
        self._listing_pages_seen += 1
        if (
            self.max_listing_pages is not None
            and self._listing_pages_seen >= self.max_listing_pages
        ):
            return None
        tree = parse_document(document.content, document.url)
        if not tree.checked_xpath(LOAD_MORE_XPATH, "load more", min_count=0):
            return None
        return self.next_listing_request(document)
