"""Persistence and paginated querying of completed reviews.

Query shape: equality filters mapping a field to one or many accepted
values, at most one RangeFilter on ``score`` or ``published``, a sort key
(leading ``-`` for descending), an offset and a page size. One row more
than the page size is fetched; its presence sets ``has_more``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel import col, select

from gleaner.common.data_models import Review
from gleaner.store.database import init_database
from gleaner.store.models import (
    LABEL_PLATFORM,
    LABEL_TAG,
    ReviewLabel,
    StoredReview,
)

logger = logging.getLogger(__name__)

LABEL_FIELDS = {"platforms": LABEL_PLATFORM, "tags": LABEL_TAG}
COLUMN_FIELDS = {"locator", "title", "reviewer"}
RANGE_FIELDS = {"score", "published"}
SORT_FIELDS = {"score", "published", "title", "reviewer", "id"}


@dataclass(frozen=True)
class RangeFilter:
    """Bounds on a numeric or date field; either bound may be open."""

    field: str
    lower: float | date | None = None
    upper: float | date | None = None
    lower_inclusive: bool = True
    upper_inclusive: bool = True

    def __post_init__(self) -> None:
        if self.field not in RANGE_FIELDS:
            raise ValueError(
                f"Range filters apply to {sorted(RANGE_FIELDS)}, not {self.field!r}"
            )
        if self.lower is None and self.upper is None:
            raise ValueError("RangeFilter needs a lower or an upper bound")


@dataclass
class ReviewPage:
    items: list[Review]
    has_more: bool
    offset: int = 0
    page_size: int = 20

    @property
    def next_offset(self) -> int | None:
        return self.offset + len(self.items) if self.has_more else None


def _accepted_values(value: Any) -> list[Any]:
    if isinstance(value, (str, int, float, date)):
        return [value]
    values = list(value)
    if not values:
        raise ValueError("An equality filter needs at least one value")
    return values


class ReviewStore:
    """Review persistence over an async SQLAlchemy session factory.

    Example::

        store = await ReviewStore.open("reviews.db")
        await store.save(review)
        page = await store.query(
            equals={"platforms": ["PC", "PS5"]},
            range_filter=RangeFilter("score", lower=8),
            sort="-score",
            page_size=3,
        )
        await store.close()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, db_path: Path | str) -> ReviewStore:
        engine, session_factory = await init_database(db_path)
        return cls(session_factory, engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def save(self, review: Review) -> int:
        """Insert or replace the review with the same locator.

        Returns:
            The database ID of the stored review.
        """
        async with self._lock, self._session_factory() as session:
            result = await session.execute(
                select(StoredReview).where(
                    col(StoredReview.locator) == review.locator
                )
            )
            row = result.scalars().first()
            values = review.model_dump(exclude={"platforms", "tags"})
            if row is None:
                row = StoredReview(**values)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                await session.execute(
                    delete(ReviewLabel).where(
                        col(ReviewLabel.review_id) == row.id
                    )
                )
            await session.flush()

            assert row.id is not None
            for kind, labels in (
                (LABEL_PLATFORM, review.platforms),
                (LABEL_TAG, review.tags),
            ):
                for label in labels:
                    session.add(
                        ReviewLabel(review_id=row.id, kind=kind, value=label)
                    )
            await session.commit()
            logger.debug(f"Stored review {review.locator} as {row.id}")
            return row.id

    async def get(self, locator: str) -> Review | None:
        page = await self.query(equals={"locator": locator}, page_size=1)
        return page.items[0] if page.items else None

    async def query(
        self,
        equals: Mapping[str, Any | Iterable[Any]] | None = None,
        range_filter: RangeFilter | None = None,
        sort: str = "-published",
        offset: int = 0,
        page_size: int = 20,
    ) -> ReviewPage:
        """Return one page of matching reviews.

        Args:
            equals: Field -> accepted value(s). ``platforms`` and ``tags``
                match when any label is accepted.
            range_filter: At most one range filter.
            sort: Sort field, ``-`` prefix for descending. Ties break by id.
            offset: Rows to skip.
            page_size: Rows per page.

        Raises:
            ValueError: On unknown fields or invalid paging arguments.
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        if offset < 0:
            raise ValueError("offset must not be negative")

        stmt = select(StoredReview)

        for field_name, accepted in (equals or {}).items():
            values = _accepted_values(accepted)
            if field_name in LABEL_FIELDS:
                labelled = select(ReviewLabel.review_id).where(
                    col(ReviewLabel.kind) == LABEL_FIELDS[field_name],
                    col(ReviewLabel.value).in_(values),
                )
                stmt = stmt.where(col(StoredReview.id).in_(labelled))
            elif field_name in COLUMN_FIELDS:
                stmt = stmt.where(
                    col(getattr(StoredReview, field_name)).in_(values)
                )
            else:
                raise ValueError(f"Cannot filter on {field_name!r}")

        if range_filter is not None:
            column = col(getattr(StoredReview, range_filter.field))
            if range_filter.lower is not None:
                stmt = stmt.where(
                    column >= range_filter.lower
                    if range_filter.lower_inclusive
                    else column > range_filter.lower
                )
            if range_filter.upper is not None:
                stmt = stmt.where(
                    column <= range_filter.upper
                    if range_filter.upper_inclusive
                    else column < range_filter.upper
                )

        descending = sort.startswith("-")
        sort_field = sort.lstrip("-")
        if sort_field not in SORT_FIELDS:
            raise ValueError(f"Cannot sort by {sort_field!r}")
        sort_column = col(getattr(StoredReview, sort_field))
        stmt = stmt.order_by(
            sort_column.desc() if descending else sort_column.asc(),
            col(StoredReview.id).asc(),
        )
        stmt = stmt.offset(offset).limit(page_size + 1)

        async with self._session_factory() as session:
            rows = list((await session.execute(stmt)).scalars().all())
            has_more = len(rows) > page_size
            rows = rows[:page_size]
            labels = await self._labels_for(
                session, [row.id for row in rows if row.id is not None]
            )

        items = [self._to_review(row, labels.get(row.id, {})) for row in rows]
        return ReviewPage(
            items=items, has_more=has_more, offset=offset, page_size=page_size
        )

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(StoredReview)
            )
            return result.scalar_one()

    async def _labels_for(
        self, session: Any, review_ids: list[int]
    ) -> dict[int, dict[str, list[str]]]:
        if not review_ids:
            return {}
        result = await session.execute(
            select(ReviewLabel)
            .where(col(ReviewLabel.review_id).in_(review_ids))
            .order_by(col(ReviewLabel.id))
        )
        grouped: dict[int, dict[str, list[str]]] = {}
        for label in result.scalars().all():
            grouped.setdefault(label.review_id, {}).setdefault(
                label.kind, []
            ).append(label.value)
        return grouped

    @staticmethod
    def _to_review(
        row: StoredReview, labels: dict[str, list[str]]
    ) -> Review:
        return Review(
            title=row.title,
            locator=row.locator,
            platforms=labels.get(LABEL_PLATFORM, []),
            tags=labels.get(LABEL_TAG, []),
            reviewer=row.reviewer,
            score=row.score,
            published=row.published,
            summary=row.summary,
            pros=list(row.pros or []),
            cons=list(row.cons or []),
        )
