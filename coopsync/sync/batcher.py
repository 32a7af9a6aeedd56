"""Coalesce local placements into batched messages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .actions import BULLDOZE_TOOL, SELECT_TOOL, Action, Bulldoze, Place, PlaceBatch, Placement
from .config import BATCH_FLUSH_INTERVAL, BATCH_MAX_SIZE

logger = logging.getLogger(__name__)


class ActionBatcher:
    """Buffer placements from one gesture and flush them on a size or time threshold.

    Isolated edits go out after ``flush_interval`` seconds; drag-painting many
    tiles goes out in chunks of at most ``max_size`` placements. Any other
    action flushes the buffer before it is sent so that placements and the
    action that follows them keep their order.
    """

    def __init__(
        self,
        sink: Callable[[Action], None],
        flush_interval: float = BATCH_FLUSH_INTERVAL,
        max_size: int = BATCH_MAX_SIZE,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._sink = sink
        self._flush_interval = flush_interval
        self._max_size = max_size
        self._loop = loop
        self._buffer: list[Placement] = []
        self._timer: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> tuple[Placement, ...]:
        return tuple(self._buffer)

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def record_placement(self, x: int, y: int, tool: str) -> None:
        if tool == SELECT_TOOL:
            return
        if tool == BULLDOZE_TOOL:
            self.submit(Bulldoze(x=x, y=y))
            return

        self._buffer.append(Placement(x=x, y=y, tool=tool))
        if len(self._buffer) >= self._max_size:
            self.flush()
        elif self._timer is None:
            self._timer = self._get_loop().call_later(self._flush_interval, self._on_timer)

    def submit(self, action: Action) -> None:
        """Send a non-placement action after flushing pending placements."""
        self.flush()
        self._sink(action)

    def flush(self) -> None:
        self._cancel_timer()
        if not self._buffer:
            return

        placements = self._buffer
        self._buffer = []
        if len(placements) == 1:
            only = placements[0]
            action: Action = Place(x=only.x, y=only.y, tool=only.tool)
        else:
            action = PlaceBatch(placements=tuple(placements))
        logger.debug("Flushing %d placement(s)", len(placements))
        self._sink(action)

    def reset(self) -> None:
        """Drop pending placements without sending them."""
        self._cancel_timer()
        self._buffer = []

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop
