"""Domain models for rooms, players and connection state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .identifiers import generate_player_id, pick_player_color


def _now_ms() -> float:
    return time.time() * 1000


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class Room:
    code: str
    display_name: str
    created_at: float = field(default_factory=_now_ms)


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    color: str
    joined_at: float = field(default_factory=_now_ms)

    @classmethod
    def local(cls, name: str) -> Player:
        return cls(id=generate_player_id(), name=name, color=pick_player_color())

    def to_wire(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color, "joinedAt": self.joined_at}

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> Player:
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            color=str(payload.get("color", "#888888")),
            joined_at=float(payload.get("joinedAt", 0)),
        )


@dataclass(frozen=True)
class RoomDescriptor:
    code: str
    host_id: str
    park_name: str
    created_at: float
    player_count: int
