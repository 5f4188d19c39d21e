"""Tests for ReviewStore persistence and paginated queries."""

from datetime import date

import pytest

from gleaner.common.data_models import Review
from gleaner.store.review_store import RangeFilter, ReviewStore


def make_review(n: int, **overrides) -> Review:
    fields = {
        "title": f"Review {n}",
        "locator": f"/r/{n}",
        "platforms": ["PC"],
        "tags": [],
        "reviewer": "Sam Lee",
        "score": float(n),
        "published": date(2024, 1, n),
    }
    fields.update(overrides)
    return Review(**fields)


@pytest.fixture
async def seeded_store(review_store: ReviewStore) -> ReviewStore:
    await review_store.save(
        make_review(1, platforms=["PC", "PS5"], tags=["Action"], reviewer="Ana")
    )
    await review_store.save(make_review(2, platforms=["PS5"], tags=["Puzzle"]))
    await review_store.save(make_review(3, platforms=["Switch"], tags=["Action"]))
    await review_store.save(
        make_review(4, platforms=["PC"], tags=["Action", "Indie"], reviewer="Ana")
    )
    await review_store.save(make_review(5, platforms=["Xbox"], published=None))
    return review_store


class TestSave:
    async def test_round_trip(self, review_store: ReviewStore) -> None:
        review = make_review(
            7,
            platforms=["PC", "PS5"],
            tags=["Action"],
            summary="Tight shooting.",
            pros=["Movement"],
            cons=["Short"],
        )

        review_id = await review_store.save(review)

        assert review_id > 0
        stored = await review_store.get("/r/7")
        assert stored is not None
        assert stored.model_dump() == review.model_dump()
        assert await review_store.count() == 1

    async def test_upsert_by_locator(self, review_store: ReviewStore) -> None:
        first_id = await review_store.save(make_review(1, tags=["Action"]))
        second_id = await review_store.save(
            make_review(1, title="Updated", tags=["Puzzle"], score=9.5)
        )

        assert first_id == second_id
        assert await review_store.count() == 1
        stored = await review_store.get("/r/1")
        assert stored.title == "Updated"
        assert stored.tags == ["Puzzle"]
        assert stored.score == 9.5

    async def test_get_missing(self, review_store: ReviewStore) -> None:
        assert await review_store.get("/r/404") is None


class TestQuery:
    async def test_over_fetch_sets_has_more(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(
            equals={"platforms": ["PC", "PS5", "Switch"]},
            sort="score",
            page_size=3,
        )

        assert page.has_more
        assert [r.locator for r in page.items] == ["/r/1", "/r/2", "/r/3"]
        assert page.next_offset == 3

        rest = await seeded_store.query(
            equals={"platforms": ["PC", "PS5", "Switch"]},
            sort="score",
            offset=3,
            page_size=3,
        )
        assert not rest.has_more
        assert [r.locator for r in rest.items] == ["/r/4"]
        assert rest.next_offset is None

    async def test_exact_page_has_no_more(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(page_size=5)
        assert len(page.items) == 5
        assert not page.has_more

    async def test_label_filter_matches_any(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(equals={"platforms": "PS5"}, sort="score")
        assert [r.locator for r in page.items] == ["/r/1", "/r/2"]

    async def test_filters_combine(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(
            equals={"tags": ["Action"], "reviewer": ["Ana"]}, sort="-score"
        )
        assert [r.locator for r in page.items] == ["/r/4", "/r/1"]

    async def test_labels_loaded_per_item(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(equals={"locator": "/r/4"})
        (review,) = page.items
        assert review.platforms == ["PC"]
        assert review.tags == ["Action", "Indie"]

    async def test_score_range(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(
            range_filter=RangeFilter("score", lower=2, upper=4, upper_inclusive=False),
            sort="score",
        )
        assert [r.score for r in page.items] == [2.0, 3.0]

    async def test_date_range(self, seeded_store: ReviewStore) -> None:
        page = await seeded_store.query(
            range_filter=RangeFilter("published", lower=date(2024, 1, 3)),
            sort="published",
        )
        assert [r.locator for r in page.items] == ["/r/3", "/r/4"]

    async def test_sort_descending_by_default_date(
        self, seeded_store: ReviewStore
    ) -> None:
        page = await seeded_store.query(equals={"reviewer": "Sam Lee"})
        dated = [r.locator for r in page.items if r.published is not None]
        assert dated == ["/r/3", "/r/2"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"equals": {"summary": "x"}},
            {"equals": {"tags": []}},
            {"sort": "stored_at"},
            {"page_size": 0},
            {"offset": -1},
        ],
    )
    async def test_invalid_arguments(
        self, seeded_store: ReviewStore, kwargs: dict
    ) -> None:
        with pytest.raises(ValueError):
            await seeded_store.query(**kwargs)


class TestRangeFilter:
    def test_unknown_field(self) -> None:
        with pytest.raises(ValueError, match="Range filters"):
            RangeFilter("title", lower=1)

    def test_needs_a_bound(self) -> None:
        with pytest.raises(ValueError, match="bound"):
            RangeFilter("score")
