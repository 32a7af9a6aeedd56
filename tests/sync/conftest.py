import asyncio
import copy
from collections.abc import Callable
from typing import Any

import pytest


class FakeParkSimulation:
    """Minimal park simulation honouring the sync layer's interface.

    Placing on an occupied tile is a no-op, like the real simulation.
    ``local_hook`` plays the part of the simulation's dispatch hook and is
    only called for edits that are not remote.
    """

    def __init__(self, park_id: str = "park-1") -> None:
        self.selected_tool = "select"
        self.state: dict[str, Any] = {
            "id": park_id,
            "tick": 0,
            "speed": 1,
            "tiles": {},
            "building": None,
            "coasters": {},
            "settings": {"name": "Test Park", "entranceFee": 10},
        }
        self.local_hook: Callable[[int, int, str], None] | None = None
        self.local_calls: list[tuple[int, int, str]] = []
        self.loaded: list[dict[str, Any]] = []

    def set_tool(self, tool: str) -> None:
        self.selected_tool = tool

    def place_at_tile(self, x: int, y: int, is_remote: bool = False) -> None:
        key = f"{x},{y}"
        if key not in self.state["tiles"]:
            self.state["tiles"][key] = self.selected_tool
        self._report(x, y, self.selected_tool, is_remote)

    def bulldoze_tile(self, x: int, y: int, is_remote: bool = False) -> None:
        self.state["tiles"].pop(f"{x},{y}", None)
        self._report(x, y, "bulldoze", is_remote)

    def start_coaster_build(self, coaster_type: str, coaster_id: str, is_remote: bool = False) -> None:
        self.state["building"] = {"type": coaster_type, "id": coaster_id}

    def finish_coaster_build(self, is_remote: bool = False) -> None:
        building = self.state["building"]
        if building is not None:
            self.state["coasters"][building["id"]] = building["type"]
        self.state["building"] = None

    def cancel_coaster_build(self, is_remote: bool = False) -> None:
        self.state["building"] = None

    def set_speed(self, speed: int) -> None:
        self.state["speed"] = speed

    def set_park_settings(self, settings: dict[str, Any], is_remote: bool = False) -> None:
        self.state["settings"] = {**self.state["settings"], **settings}

    def load_state(self, state: dict[str, Any]) -> bool:
        self.state = copy.deepcopy(state)
        self.loaded.append(state)
        return True

    def serialize_state(self) -> dict[str, Any]:
        return copy.deepcopy(self.state)

    def _report(self, x: int, y: int, tool: str, is_remote: bool) -> None:
        if is_remote:
            return
        self.local_calls.append((x, y, tool))
        if self.local_hook is not None:
            self.local_hook(x, y, tool)


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def simulation() -> FakeParkSimulation:
    return FakeParkSimulation()


@pytest.fixture
def make_simulation() -> Callable[..., FakeParkSimulation]:
    return FakeParkSimulation


@pytest.fixture
def settle() -> Callable[..., Any]:
    return _settle
