"""Tests for PageExtractor's multi-hop protocol, using GameReviewExtractor."""

from datetime import date
from urllib.parse import urljoin

import pytest

from gleaner.common.data_models import DeferredValidation
from gleaner.common.exceptions import ContentTimeout
from gleaner.data_types import (
    AdapterTag,
    CrawlRequest,
    ParsedData,
    ResolvedDocument,
)
from gleaner.extractor import ENTITY_KEY, Hop1Result, Hop2FailurePolicy
from gleaner.pending import EntityState
from gleaner.sites.game_reviews import GameReviewExtractor
from tests.utils import (
    BASE_URL,
    LISTING_URL,
    game_page,
    listing_chunk,
    listing_page,
    review_page,
)


def document_for(
    request: CrawlRequest, content: str, url: str | None = None
) -> ResolvedDocument:
    return ResolvedDocument(request=request, content=content, url=url or request.url)


def listing_document(
    cards: list[tuple[str, str]],
    load_more: bool = False,
    url: str = LISTING_URL,
) -> ResolvedDocument:
    request = CrawlRequest(
        url=url,
        callback="parse_listing",
        adapter=AdapterTag.SCROLL_PAGINATION,
    )
    return document_for(
        request, listing_page([listing_chunk(1, cards)], load_more=load_more)
    )


def hop_document(
    request: CrawlRequest, content: str
) -> ResolvedDocument:
    return document_for(request, content, url=urljoin(LISTING_URL, request.url))


@pytest.fixture
def extractor() -> GameReviewExtractor:
    return GameReviewExtractor()


class TestParseListing:
    def test_one_hop1_request_and_entity_per_url(
        self, extractor: GameReviewExtractor
    ) -> None:
        cards = [("/r/1", "Halo"), ("/r/2", "Tetris"), ("/r/3", "Celeste")]

        yielded = list(extractor.parse_listing(listing_document(cards)))

        assert len(yielded) == 3
        assert len(extractor.pending) == 3
        for request, (url, title) in zip(yielded, cards, strict=True):
            assert isinstance(request, CrawlRequest)
            assert request.url == f"{BASE_URL}{url}"
            assert request.callback == "parse_hop1"
            assert request.adapter is AdapterTag.DELAY_LOAD
            assert request.is_continuation
            assert request.metadata == {ENTITY_KEY: f"{BASE_URL}{url}"}
            entity = extractor.pending.get(f"{BASE_URL}{url}")
            assert entity.locator == url
            assert entity.state is EntityState.HOP1_PENDING
            assert entity.fields == {"title": title}

    def test_repeated_snapshot_schedules_each_entity_once(
        self, extractor: GameReviewExtractor
    ) -> None:
        first = list(extractor.parse_listing(listing_document([("/r/1", "Halo")])))
        second = list(
            extractor.parse_listing(
                listing_document([("/r/1", "Halo"), ("/r/2", "Tetris")])
            )
        )

        assert [r.url for r in first] == [f"{BASE_URL}/r/1"]
        assert [r.url for r in second] == [f"{BASE_URL}/r/2"]

    def test_same_path_on_two_hosts_is_two_entities(
        self, extractor: GameReviewExtractor
    ) -> None:
        mirror = "https://mirror.example.org/reviews"

        first = list(extractor.parse_listing(listing_document([("/r/1", "Halo")])))
        second = list(
            extractor.parse_listing(listing_document([("/r/1", "Halo")], url=mirror))
        )

        assert [r.url for r in first] == [f"{BASE_URL}/r/1"]
        assert [r.url for r in second] == ["https://mirror.example.org/r/1"]
        assert len(extractor.pending) == 2
        assert extractor.pending.get("https://mirror.example.org/r/1").locator == "/r/1"

    def test_scanned_links_forgotten_once_listing_ends(
        self, extractor: GameReviewExtractor
    ) -> None:
        list(
            extractor.parse_listing(
                listing_document([("/r/1", "Halo")], load_more=True)
            )
        )
        assert extractor._seen == {LISTING_URL: {"/r/1"}}

        list(
            extractor.parse_listing(
                listing_document([("/r/1", "Halo"), ("/r/2", "Tetris")])
            )
        )
        assert extractor._seen == {}

    def test_failed_listing_forgets_scanned_links(
        self, extractor: GameReviewExtractor
    ) -> None:
        document = listing_document([("/r/1", "Halo")], load_more=True)
        *_, next_page = extractor.parse_listing(document)

        extractor.on_chain_failed(
            next_page, ContentTimeout("[data-page='2']", 100, LISTING_URL)
        )

        assert extractor._seen == {}
        # The entity opened from the first page is still in flight
        assert f"{BASE_URL}/r/1" in extractor.pending

    def test_next_page_requested_while_load_more_present(
        self, extractor: GameReviewExtractor
    ) -> None:
        document = listing_document([("/r/1", "Halo")], load_more=True)

        *_, next_page = extractor.parse_listing(document)

        assert next_page.callback == "parse_listing"
        assert next_page.adapter is AdapterTag.SCROLL_PAGINATION
        assert next_page.is_continuation
        assert next_page.url == LISTING_URL
        # Listing pages are served ahead of the hop requests they produced
        assert next_page.priority < document.request.priority

    def test_no_next_page_without_load_more(
        self, extractor: GameReviewExtractor
    ) -> None:
        yielded = list(extractor.parse_listing(listing_document([("/r/1", "Halo")])))
        assert all(r.callback == "parse_hop1" for r in yielded)

    def test_max_listing_pages(self) -> None:
        extractor = GameReviewExtractor(max_listing_pages=1)
        document = listing_document([("/r/1", "Halo")], load_more=True)

        yielded = list(extractor.parse_listing(document))

        assert [r.callback for r in yielded] == ["parse_hop1"]

    def test_card_without_link_skipped(self, extractor: GameReviewExtractor) -> None:
        request = CrawlRequest(url=LISTING_URL, callback="parse_listing")
        content = (
            '<html><body><section data-page="1">'
            '<article class="review-card"><span>No link</span></article>'
            '<article class="review-card"><a class="review-link" href="/r/9">Ok</a></article>'
            "</section></body></html>"
        )

        yielded = list(extractor.parse_listing(document_for(request, content)))

        assert [r.url for r in yielded] == [f"{BASE_URL}/r/9"]


class TestHops:
    def open_entity(
        self, extractor: GameReviewExtractor, key: str = "/r/1"
    ) -> CrawlRequest:
        (request,) = extractor.parse_listing(listing_document([(key, "Halo Infinite")]))
        return request

    def test_hop1_advances_and_requests_hop2(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor)

        (follow_up,) = extractor.parse_hop1(hop_document(hop1, review_page()))

        assert follow_up.url == "/g/1"
        assert follow_up.callback == "parse_hop2"
        assert follow_up.adapter is AdapterTag.DELAY_LOAD
        assert follow_up.metadata == {ENTITY_KEY: f"{BASE_URL}/r/1"}
        entity = extractor.pending.get(f"{BASE_URL}/r/1")
        assert entity.state is EntityState.HOP2_PENDING
        assert entity.fields["score"] == 8.5
        assert entity.fields["platforms"] == ["PC", "Xbox Series X"]
        assert entity.fields["reviewer"] == "Sam Lee"

    def test_hop1_reads_iso_timestamp_attribute(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor)

        (follow_up,) = extractor.parse_hop1(
            hop_document(hop1, review_page(published="2024-03-01T10:00:00Z"))
        )

        assert follow_up.callback == "parse_hop2"
        entity = extractor.pending.get(f"{BASE_URL}/r/1")
        assert entity.fields["published"] == date(2024, 3, 1)

    def test_hop2_completes_entity(self, extractor: GameReviewExtractor) -> None:
        hop1 = self.open_entity(extractor)
        (hop2,) = extractor.parse_hop1(hop_document(hop1, review_page()))

        (parsed,) = extractor.parse_hop2(hop_document(hop2, game_page(["Action"])))

        assert isinstance(parsed, ParsedData)
        pending = parsed.unwrap()
        assert isinstance(pending, DeferredValidation)
        review = pending.confirm()
        assert review.locator == "/r/1"
        assert review.title == "Halo Infinite"
        assert review.tags == ["Action"]
        assert review.pros == ["Great movement"]
        assert str(review.published) == "2024-03-01"
        assert len(extractor.pending) == 0
        assert extractor.pending.completed == 1

    def test_hop1_missing_score_discards(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor, "/r/2")

        yielded = list(extractor.parse_hop1(hop_document(hop1, review_page(score=None))))

        assert yielded == []
        assert f"{BASE_URL}/r/2" not in extractor.pending
        assert extractor.pending.discarded == 1

    def test_hop1_without_platforms_discards(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor)

        list(extractor.parse_hop1(hop_document(hop1, review_page(platforms=" , "))))

        assert len(extractor.pending) == 0

    def test_hop1_without_game_link_emits_immediately(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor)

        (parsed,) = extractor.parse_hop1(
            hop_document(hop1, review_page(game_href=None))
        )

        review = parsed.unwrap().confirm()
        assert review.locator == "/r/1"
        assert review.tags == []
        assert len(extractor.pending) == 0

    def test_hop2_failure_discards_by_default(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor)
        (hop2,) = extractor.parse_hop1(hop_document(hop1, review_page()))

        yielded = list(extractor.parse_hop2(hop_document(hop2, game_page([]))))

        assert yielded == []
        assert extractor.pending.discarded == 1

    def test_hop2_failure_emit_partial(self) -> None:
        extractor = GameReviewExtractor(
            hop2_failure_policy=Hop2FailurePolicy.EMIT_PARTIAL
        )
        hop1 = self.open_entity(extractor)
        (hop2,) = extractor.parse_hop1(hop_document(hop1, review_page()))

        (parsed,) = extractor.parse_hop2(hop_document(hop2, game_page([])))

        review = parsed.unwrap().confirm()
        assert review.tags == []
        assert review.score == 8.5

    def test_callback_for_unknown_entity_yields_nothing(
        self, extractor: GameReviewExtractor
    ) -> None:
        stray = CrawlRequest(
            url="/r/99", callback="parse_hop1", metadata={ENTITY_KEY: "/r/99"}
        )
        assert list(extractor.parse_hop1(hop_document(stray, review_page()))) == []

    def test_on_chain_failed_discards_owner(
        self, extractor: GameReviewExtractor
    ) -> None:
        hop1 = self.open_entity(extractor)

        extractor.on_chain_failed(
            hop1, ContentTimeout("article", 100, f"{BASE_URL}/r/1")
        )
        extractor.on_chain_failed(
            hop1, ContentTimeout("article", 100, f"{BASE_URL}/r/1")
        )

        assert len(extractor.pending) == 0
        assert extractor.pending.discarded == 1

    def test_on_chain_failed_without_entity(
        self, extractor: GameReviewExtractor
    ) -> None:
        listing = CrawlRequest(url=LISTING_URL, callback="parse_listing")
        extractor.on_chain_failed(listing, ContentTimeout("x", 1, LISTING_URL))
        assert extractor.pending.discarded == 0

    def test_follow_up_gets_entity_key(self) -> None:
        class NoKeyExtractor(GameReviewExtractor):
            def extract_hop1(self, document, entity):
                return Hop1Result(
                    fields={"platforms": ["PC"], "score": 7.0},
                    follow_up=CrawlRequest(url="/g/5", callback="parse_hop2"),
                )

        extractor = NoKeyExtractor()
        hop1 = self.open_entity(extractor)

        (follow_up,) = extractor.parse_hop1(hop_document(hop1, review_page()))

        assert follow_up.metadata[ENTITY_KEY] == f"{BASE_URL}/r/1"

    def test_hop1_rejection(self) -> None:
        class RejectingExtractor(GameReviewExtractor):
            def extract_hop1(self, document, entity):
                return None

        extractor = RejectingExtractor()
        hop1 = self.open_entity(extractor)

        assert list(extractor.parse_hop1(hop_document(hop1, review_page()))) == []
        assert extractor.pending.discarded == 1
