"""Persistence interfaces and implementations for room records."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol

from coopsync.server.models import RoomRecord
from coopsync.sync.codec import byte_length, check_state_size
from coopsync.sync.config import MAX_STATE_BYTES
from coopsync.sync.errors import ConstraintError


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RoomStore(Protocol):
    def create_room(self, room_code: str, park_name: str, game_state: str) -> RoomRecord | None:
        """Persist a new room. Returns None when the code is taken."""

    def get_room(self, room_code: str) -> RoomRecord | None:
        """Return the room record when it exists."""

    def update_state(self, room_code: str, game_state: str) -> RoomRecord | None:
        """Replace the compressed state. Returns None when the room is unknown."""

    def update_player_count(self, room_code: str, player_count: int) -> RoomRecord | None:
        """Record the number of connected players. Returns None when the room is unknown."""


@dataclass
class InMemoryRoomStore:
    max_state_bytes: int = MAX_STATE_BYTES

    def __post_init__(self) -> None:
        self._rooms: dict[str, RoomRecord] = {}

    def create_room(self, room_code: str, park_name: str, game_state: str) -> RoomRecord | None:
        check_state_size(game_state, self.max_state_bytes)
        code = room_code.upper()
        if code in self._rooms:
            return None
        now = _utc_now_iso()
        record = RoomRecord(
            room_code=code,
            park_name=park_name,
            game_state=game_state,
            player_count=1,
            created_at=now,
            updated_at=now,
        )
        self._rooms[code] = record
        return record

    def get_room(self, room_code: str) -> RoomRecord | None:
        return self._rooms.get(room_code.upper())

    def update_state(self, room_code: str, game_state: str) -> RoomRecord | None:
        check_state_size(game_state, self.max_state_bytes)
        return self._replace(room_code, game_state=game_state)

    def update_player_count(self, room_code: str, player_count: int) -> RoomRecord | None:
        return self._replace(room_code, player_count=player_count)

    def _replace(self, room_code: str, **changes: Any) -> RoomRecord | None:
        code = room_code.upper()
        record = self._rooms.get(code)
        if record is None:
            return None
        updated = replace(record, updated_at=_utc_now_iso(), **changes)
        self._rooms[code] = updated
        return updated


@dataclass
class PostgresRoomStore:
    database_url: str
    max_state_bytes: int = MAX_STATE_BYTES

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def create_room(self, room_code: str, park_name: str, game_state: str) -> RoomRecord | None:
        check_state_size(game_state, self.max_state_bytes)
        return self._execute_returning(
            """
            INSERT INTO game_rooms (room_code, park_name, game_state, player_count)
            VALUES (%s, %s, %s, 1)
            ON CONFLICT (room_code) DO NOTHING
            RETURNING room_code, park_name, game_state, player_count, created_at, updated_at
            """,
            (room_code.upper(), park_name, game_state),
            game_state,
        )

    def get_room(self, room_code: str) -> RoomRecord | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT room_code, park_name, game_state, player_count, created_at, updated_at
                    FROM game_rooms
                    WHERE room_code = %s
                    """,
                    (room_code.upper(),),
                )
                row = cur.fetchone()
        return _row_to_record(row) if row is not None else None

    def update_state(self, room_code: str, game_state: str) -> RoomRecord | None:
        check_state_size(game_state, self.max_state_bytes)
        return self._execute_returning(
            """
            UPDATE game_rooms
            SET game_state = %s
            WHERE room_code = %s
            RETURNING room_code, park_name, game_state, player_count, created_at, updated_at
            """,
            (game_state, room_code.upper()),
            game_state,
        )

    def update_player_count(self, room_code: str, player_count: int) -> RoomRecord | None:
        return self._execute_returning(
            """
            UPDATE game_rooms
            SET player_count = %s
            WHERE room_code = %s
            RETURNING room_code, park_name, game_state, player_count, created_at, updated_at
            """,
            (player_count, room_code.upper()),
            None,
        )

    def _execute_returning(self, sql: str, params: tuple, game_state: str | None) -> RoomRecord | None:
        import psycopg.errors

        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
                conn.commit()
        except psycopg.errors.CheckViolation as exc:
            size = byte_length(game_state) if game_state is not None else 0
            raise ConstraintError(size_bytes=size, limit_bytes=self.max_state_bytes) from exc
        return _row_to_record(row) if row is not None else None


def _row_to_record(row: tuple) -> RoomRecord:
    room_code, park_name, game_state, player_count, created_at, updated_at = row
    return RoomRecord(
        room_code=room_code,
        park_name=park_name,
        game_state=game_state,
        player_count=int(player_count),
        created_at=created_at.isoformat() if isinstance(created_at, datetime) else str(created_at),
        updated_at=updated_at.isoformat() if isinstance(updated_at, datetime) else str(updated_at),
    )


def create_store(database_url: str | None, max_state_bytes: int = MAX_STATE_BYTES) -> RoomStore:
    if database_url:
        return PostgresRoomStore(database_url=database_url, max_state_bytes=max_state_bytes)
    return InMemoryRoomStore(max_state_bytes=max_state_bytes)
