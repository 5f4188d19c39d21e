"""Callback factories for the engine's ``on_data`` parameter.

Each factory returns an async callback receiving one validated entity.
Pydantic models are dumped in JSON mode so dates serialize cleanly.

Example::

    from gleaner.callbacks import combine_callbacks, save_to_jsonl_file

    with open("reviews.jsonl", "w") as f:
        engine = CrawlEngine(
            extractor,
            chain,
            on_data=combine_callbacks(save_to_jsonl_file(f), store_reviews(store)),
        )
        await engine.run()
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TextIO

from pydantic import BaseModel

if TYPE_CHECKING:
    from gleaner.store.review_store import ReviewStore

DataCallback = Callable[[Any], Awaitable[None]]


def to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


def save_to_jsonl_file(file_handle: TextIO) -> DataCallback:
    """Write each entity as one JSON line to an open file handle.

    The caller opens and closes the file.
    """

    async def callback(data: Any) -> None:
        json.dump(to_jsonable(data), file_handle)
        file_handle.write("\n")
        file_handle.flush()

    return callback


def print_data(prefix: str = "") -> DataCallback:
    """Print each entity to stdout, for watching a run during development."""

    async def callback(data: Any) -> None:
        print(f"{prefix}{json.dumps(to_jsonable(data), indent=2)}")

    return callback


def count_data(counter: list[int] | None = None) -> DataCallback:
    """Count entities into ``counter[0]``.

    Example::

        count = [0]
        engine = CrawlEngine(extractor, chain, on_data=count_data(count))
        await engine.run()
        print(f"Stored {count[0]} reviews")
    """
    if counter is None:
        counter = [0]

    async def callback(data: Any) -> None:
        counter[0] += 1

    return callback


def combine_callbacks(*callbacks: DataCallback) -> DataCallback:
    """Invoke several callbacks in order for each entity."""

    async def callback(data: Any) -> None:
        for cb in callbacks:
            await cb(data)

    return callback


def store_reviews(store: ReviewStore) -> DataCallback:
    """Persist each Review through ``store.save``."""

    async def callback(data: Any) -> None:
        await store.save(data)

    return callback
