"""Remote action applicator.

Replays actions received from peers against the local simulation. Every
call into the simulation is flagged ``is_remote=True`` so the simulation's
local dispatch hook does not forward the edit back into the batcher.
"""

from __future__ import annotations

import logging
from typing import Any, Never, Protocol

from pydantic import ValidationError

from .actions import (
    Action,
    Bulldoze,
    CancelCoasterBuild,
    FinishCoasterBuild,
    Place,
    PlaceBatch,
    SetParkSettings,
    SetSpeed,
    StartCoasterBuild,
    parse_action,
)

logger = logging.getLogger(__name__)


class Simulation(Protocol):
    """Interface of the park simulation consumed by the sync layer."""

    @property
    def selected_tool(self) -> str:
        """Tool currently selected by the local user."""

    def set_tool(self, tool: str) -> None:
        """Select a tool."""

    def place_at_tile(self, x: int, y: int, is_remote: bool = False) -> None:
        """Place the selected tool at a tile. Placing on an occupied tile is a no-op."""

    def bulldoze_tile(self, x: int, y: int, is_remote: bool = False) -> None:
        """Clear a tile."""

    def start_coaster_build(self, coaster_type: str, coaster_id: str, is_remote: bool = False) -> None:
        """Begin building a coaster."""

    def finish_coaster_build(self, is_remote: bool = False) -> None:
        """Complete the coaster being built."""

    def cancel_coaster_build(self, is_remote: bool = False) -> None:
        """Abort the coaster being built."""

    def set_speed(self, speed: int) -> None:
        """Set the shared tick speed."""

    def set_park_settings(self, settings: dict[str, Any], is_remote: bool = False) -> None:
        """Merge partial park settings."""

    def load_state(self, state: dict[str, Any]) -> bool:
        """Replace the simulation state with a snapshot."""

    def serialize_state(self) -> dict[str, Any]:
        """Return a JSON-compatible snapshot of the simulation state."""


def apply_remote_action(action: Action, simulation: Simulation) -> None:
    match action:
        case Place():
            previous_tool = simulation.selected_tool
            simulation.set_tool(action.tool)
            simulation.place_at_tile(action.x, action.y, is_remote=True)
            simulation.set_tool(previous_tool)
        case PlaceBatch():
            previous_tool = simulation.selected_tool
            for placement in action.placements:
                simulation.set_tool(placement.tool)
                simulation.place_at_tile(placement.x, placement.y, is_remote=True)
            simulation.set_tool(previous_tool)
        case Bulldoze():
            simulation.bulldoze_tile(action.x, action.y, is_remote=True)
        case StartCoasterBuild():
            simulation.start_coaster_build(action.coaster_type, action.coaster_id, is_remote=True)
        case FinishCoasterBuild():
            simulation.finish_coaster_build(is_remote=True)
        case CancelCoasterBuild():
            simulation.cancel_coaster_build(is_remote=True)
        case SetSpeed():
            simulation.set_speed(action.speed)
        case SetParkSettings():
            simulation.set_park_settings(dict(action.settings), is_remote=True)
        case _:
            _drop_unhandled(action)


def _drop_unhandled(action: Never) -> None:
    # Type checkers flag any variant added to Action without a case above.
    logger.warning("Dropping unknown remote action: %r", action)


def apply_remote_message(payload: Any, simulation: Simulation) -> bool:
    """Validate a raw wire payload and apply it. Returns False when it was dropped."""
    if not isinstance(payload, dict):
        logger.warning("Dropping malformed remote action: %r", payload)
        return False
    try:
        action = parse_action(payload)
    except ValidationError as exc:
        logger.warning("Dropping malformed remote action %r: %s", payload.get("type"), exc.errors())
        return False
    apply_remote_action(action, simulation)
    return True
