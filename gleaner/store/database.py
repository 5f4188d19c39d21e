"""SQLite engine for the review store.

One database file holds one store. Tables are created on open when
missing; there are no migrations, a changed schema means a new file.
``":memory:"`` gives a private in-memory database kept alive for the
engine's lifetime.
"""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from gleaner.store.models import ReviewLabel, StoredReview  # noqa: F401

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

# Applied on every new DBAPI connection
SQLITE_PRAGMAS = ("foreign_keys=ON", "busy_timeout=5000")
FILE_PRAGMAS = ("journal_mode=WAL",)


def sqlite_url(db_path: Path | str) -> str:
    """SQLAlchemy URL for ``db_path`` on the aiosqlite driver."""
    if str(db_path) == MEMORY:
        return "sqlite+aiosqlite://"
    return f"sqlite+aiosqlite:///{Path(db_path).expanduser()}"


def _apply_pragmas(
    pragmas: tuple[str, ...], dbapi_conn: Any, connection_record: Any
) -> None:
    cursor = dbapi_conn.cursor()
    try:
        for pragma in pragmas:
            cursor.execute(f"PRAGMA {pragma}")
    finally:
        cursor.close()


async def init_database(
    db_path: Path | str,
    echo: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Open the store database, creating missing tables.

    Returns:
        The engine and a session factory bound to it. Sessions do not
        expire loaded rows on commit.
    """
    in_memory = str(db_path) == MEMORY
    if not in_memory:
        Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    # A single shared connection; aiosqlite hops threads under it
    engine = create_async_engine(
        sqlite_url(db_path),
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    pragmas = SQLITE_PRAGMAS if in_memory else FILE_PRAGMAS + SQLITE_PRAGMAS
    event.listen(engine.sync_engine, "connect", partial(_apply_pragmas, pragmas))

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.debug(f"Review store ready at {db_path}")

    return engine, async_sessionmaker(engine, expire_on_commit=False)
