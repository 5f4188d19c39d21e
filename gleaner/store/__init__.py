"""SQLite persistence and querying of completed reviews."""

from gleaner.store.database import init_database
from gleaner.store.models import ReviewLabel, StoredReview
from gleaner.store.review_store import RangeFilter, ReviewPage, ReviewStore

__all__ = [
    "RangeFilter",
    "ReviewLabel",
    "ReviewPage",
    "ReviewStore",
    "StoredReview",
    "init_database",
]
