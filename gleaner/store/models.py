"""SQLModel table definitions for the review store.

Tables:
- reviews: one row per completed review, unique by locator
- review_labels: platform and tag labels, many per review
"""

from __future__ import annotations

from datetime import date

import sqlalchemy as sa
from sqlalchemy import Column
from sqlmodel import Field, SQLModel

LABEL_PLATFORM = "platform"
LABEL_TAG = "tag"


class StoredReview(SQLModel, table=True):  # type: ignore[call-arg]
    """A persisted review. Labels live in review_labels."""

    __tablename__ = "reviews"
    __table_args__ = (
        sa.Index("idx_reviews_score", "score"),
        sa.Index("idx_reviews_published", "published"),
        sa.Index("idx_reviews_reviewer", "reviewer"),
    )

    id: int | None = Field(default=None, primary_key=True)
    locator: str = Field(unique=True)
    title: str
    reviewer: str | None = None
    score: float
    published: date | None = None
    summary: str | None = None
    pros: list[str] = Field(default_factory=list, sa_column=Column(sa.JSON))
    cons: list[str] = Field(default_factory=list, sa_column=Column(sa.JSON))
    stored_at: str | None = Field(
        default=None,
        sa_column_kwargs={"server_default": sa.text("CURRENT_TIMESTAMP")},
    )


class ReviewLabel(SQLModel, table=True):  # type: ignore[call-arg]
    """A platform or tag attached to a review."""

    __tablename__ = "review_labels"
    __table_args__ = (
        sa.UniqueConstraint(
            "review_id", "kind", "value", name="uq_review_labels"
        ),
        sa.Index("idx_review_labels_kind_value", "kind", "value"),
    )

    id: int | None = Field(default=None, primary_key=True)
    review_id: int = Field(
        sa_column=Column(
            sa.Integer,
            sa.ForeignKey("reviews.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    kind: str
    value: str
