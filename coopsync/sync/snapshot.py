"""Throttled full-state pushes and the saved parks index."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .config import DEFAULT_PARK_NAME, INDEX_INTERVAL, SNAPSHOT_INTERVAL

logger = logging.getLogger(__name__)
SAVED_PARKS_LIMIT = 20


@dataclass(frozen=True)
class ParkMeta:
    id: str
    name: str
    guests: int
    rating: float
    cash: float
    grid_size: int
    year: int
    month: int
    day: int
    saved_at: float
    room_code: str | None = None

    @classmethod
    def from_state(cls, state: dict[str, Any], room_code: str | None, saved_at: float | None = None) -> ParkMeta:
        saved = saved_at if saved_at is not None else time.time() * 1000
        settings = state.get("settings") or {}
        stats = state.get("stats") or {}
        finances = state.get("finances") or {}
        return cls(
            id=str(state.get("id") or f"park-{int(saved)}"),
            name=str(settings.get("name") or DEFAULT_PARK_NAME),
            guests=int(stats.get("guestsInPark") or 0),
            rating=float(stats.get("parkRating") or 0),
            cash=float(finances.get("cash") or 0),
            grid_size=int(state.get("gridSize") or 60),
            year=int(state.get("year") or 1),
            month=int(state.get("month") or 1),
            day=int(state.get("day") or 1),
            saved_at=saved,
            room_code=room_code,
        )


class SavedParksIndex(Protocol):
    def upsert(self, meta: ParkMeta) -> None:
        """Insert or replace the entry for ``meta.room_code``."""

    def entries(self) -> list[ParkMeta]:
        """Return entries, most recent first."""


class InMemorySavedParksIndex:
    def __init__(self, limit: int = SAVED_PARKS_LIMIT) -> None:
        self.limit = limit
        self._entries: list[ParkMeta] = []

    def upsert(self, meta: ParkMeta) -> None:
        for index, existing in enumerate(self._entries):
            if meta.room_code is not None and existing.room_code == meta.room_code:
                self._entries[index] = meta
                break
        else:
            self._entries.insert(0, meta)
        del self._entries[self.limit :]

    def entries(self) -> list[ParkMeta]:
        return list(self._entries)

    def find(self, room_code: str) -> ParkMeta | None:
        for meta in self._entries:
            if meta.room_code == room_code:
                return meta
        return None


class SnapshotBroadcaster:
    """Push the local state at most once per ``interval`` seconds.

    The floor is enforced by the time of the last push rather than by a
    timer, so a burst of calls collapses into a single send. The saved
    parks index is refreshed on its own, slower floor.
    """

    def __init__(
        self,
        push: Callable[[dict[str, Any]], Awaitable[Any]],
        index: SavedParksIndex | None = None,
        interval: float = SNAPSHOT_INTERVAL,
        index_interval: float = INDEX_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._push = push
        self._index = index
        self.interval = interval
        self.index_interval = index_interval
        self._clock = clock
        self._last_push: float | None = None
        self._last_index: float | None = None

    def reset(self) -> None:
        self._last_push = None
        self._last_index = None

    async def maybe_push(self, state: dict[str, Any], room_code: str | None, broadcast: bool = True) -> bool:
        """Returns True when the state was pushed to the room."""
        now = self._clock()
        if self._last_push is not None and now - self._last_push < self.interval:
            return False
        self._last_push = now

        pushed = False
        if broadcast:
            await self._push(state)
            pushed = True

        if self._index is not None and room_code:
            if self._last_index is None or now - self._last_index >= self.index_interval:
                self._last_index = now
                self._index.upsert(ParkMeta.from_state(state, room_code=room_code))
                logger.debug("Saved parks index updated for room %s", room_code)
        return pushed
