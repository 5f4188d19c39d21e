"""Owned mapping of partially extracted entities.

Each entry is keyed by the absolute URL of the listing link that created it
and lives exactly as long as its multi-hop chain. Every exit path removes it:
``complete()`` on success, ``discard()`` on any failure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EntityState(str, Enum):
    LISTING_SCAN = "listing_scan"
    HOP1_PENDING = "hop1_pending"
    HOP2_PENDING = "hop2_pending"
    COMPLETE = "complete"
    DISCARDED = "discarded"


@dataclass
class PendingEntity:
    """``locator`` is the link as written on the listing; ``key`` resolves it."""

    key: str
    locator: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    state: EntityState = EntityState.LISTING_SCAN


class PendingEntities:
    """Arena of in-flight entities.

    Example::

        pending = PendingEntities()
        pending.open("/r/1", {"title": "Halo"})
        pending.advance("/r/1", {"score": 9.0})
        fields = pending.complete("/r/1")
    """

    def __init__(self) -> None:
        self._entries: dict[str, PendingEntity] = {}
        self.completed = 0
        self.discarded = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def open(
        self,
        key: str,
        seed: Mapping[str, Any] | None = None,
        locator: str | None = None,
    ) -> bool:
        """Create the entry for ``key`` in HOP1_PENDING.

        ``locator`` defaults to ``key``.

        Returns:
            False, leaving the existing entry untouched, if ``key`` already
            has a chain in flight.
        """
        if key in self._entries:
            logger.debug(f"Entity {key} already in flight, not reopening")
            return False
        self._entries[key] = PendingEntity(
            key=key,
            locator=locator or key,
            fields=dict(seed or {}),
            state=EntityState.HOP1_PENDING,
        )
        return True

    def get(self, key: str) -> PendingEntity | None:
        return self._entries.get(key)

    def advance(self, key: str, fields: Mapping[str, Any]) -> PendingEntity:
        """Merge hop-1 fields and move the entry to HOP2_PENDING.

        Raises:
            KeyError: If ``key`` is not in flight.
        """
        entity = self._entries[key]
        entity.fields.update(fields)
        entity.state = EntityState.HOP2_PENDING
        return entity

    def complete(
        self, key: str, fields: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Remove the entry and return its merged fields.

        Raises:
            KeyError: If ``key`` is not in flight.
        """
        entity = self._entries.pop(key)
        if fields:
            entity.fields.update(fields)
        entity.state = EntityState.COMPLETE
        self.completed += 1
        return entity.fields

    def discard(self, key: str | None, reason: str = "") -> bool:
        """Remove the entry for ``key`` if present.

        Unknown keys are a no-op; this never raises.

        Returns:
            True if an entry was removed.
        """
        if key is None:
            return False
        entity = self._entries.pop(key, None)
        if entity is None:
            return False
        entity.state = EntityState.DISCARDED
        self.discarded += 1
        logger.info(
            f"Discarded entity {key}: {reason}",
            extra={"entity_key": key, "discard_reason": reason},
        )
        return True
