"""Persisted room records."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RoomRecord:
    room_code: str
    park_name: str
    game_state: str
    player_count: int
    created_at: str
    updated_at: str
