"""Client for the persisted room records behind the relay."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from .codec import byte_length, check_state_size, compress_state, decompress_state
from .config import MAX_STATE_BYTES
from .errors import ConstraintError

if TYPE_CHECKING:
    from .worker import CompressionWorker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredRoom:
    room_code: str
    park_name: str
    state: dict[str, Any]


class RoomArchive(Protocol):
    async def create_room(self, room_code: str, park_name: str, state: dict[str, Any]) -> bool:
        """Persist a new room record. Raises ConstraintError when the state is too large."""

    async def load_room(self, room_code: str) -> StoredRoom | None:
        """Return the persisted room, or None."""

    async def update_room(self, room_code: str, state: dict[str, Any]) -> bool:
        """Replace the persisted state. Raises ConstraintError when the state is too large."""

    async def update_player_count(self, room_code: str, count: int) -> None:
        """Record the number of connected players."""


class HttpRoomStore:
    """RoomArchive backed by the server's ``/api/rooms`` endpoints.

    Transport failures are logged and reported as False/None. Oversized
    snapshots are rejected locally before any request is made, and a 413
    from the server is raised as ConstraintError as well.
    """

    def __init__(
        self,
        base_url: str = "",
        worker: CompressionWorker | None = None,
        max_state_bytes: int = MAX_STATE_BYTES,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client if client is not None else httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._worker = worker
        self.max_state_bytes = max_state_bytes

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_room(self, room_code: str, park_name: str, state: dict[str, Any]) -> bool:
        compressed = await self._compress(state)
        try:
            response = await self._client.post(
                "/api/rooms",
                json={"room_code": room_code.upper(), "park_name": park_name, "game_state": compressed},
            )
        except httpx.HTTPError as exc:
            logger.error("Failed to create room %s: %s", room_code, exc)
            return False
        return self._check_write(response, room_code, compressed)

    async def load_room(self, room_code: str) -> StoredRoom | None:
        try:
            response = await self._client.get(f"/api/rooms/{room_code.upper()}")
        except httpx.HTTPError as exc:
            logger.error("Failed to load room %s: %s", room_code, exc)
            return None
        if response.status_code == 404:
            return None
        if response.is_error:
            logger.error("Failed to load room %s: HTTP %d", room_code, response.status_code)
            return None

        try:
            payload = response.json()
            encoded = payload["game_state"]
            stored_code = payload["room_code"]
            park_name = payload["park_name"]
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Malformed record for room %s: %r", room_code, exc)
            return None
        if not isinstance(encoded, str):
            logger.error("Malformed record for room %s: game_state is %s", room_code, type(encoded).__name__)
            return None
        if self._worker is not None:
            state = await self._worker.decompress_parse_encoded(encoded)
        else:
            state = decompress_state(encoded, encoded=True)
        if state is None:
            logger.error("Failed to decompress state of room %s", room_code)
            return None
        return StoredRoom(room_code=stored_code, park_name=park_name, state=state)

    async def update_room(self, room_code: str, state: dict[str, Any]) -> bool:
        compressed = await self._compress(state)
        try:
            response = await self._client.put(
                f"/api/rooms/{room_code.upper()}/state",
                json={"game_state": compressed},
            )
        except httpx.HTTPError as exc:
            logger.error("Failed to update room %s: %s", room_code, exc)
            return False
        return self._check_write(response, room_code, compressed)

    async def update_player_count(self, room_code: str, count: int) -> None:
        try:
            response = await self._client.put(
                f"/api/rooms/{room_code.upper()}/players",
                json={"player_count": count},
            )
        except httpx.HTTPError as exc:
            logger.warning("Failed to update player count of room %s: %s", room_code, exc)
            return
        if response.is_error:
            logger.warning("Failed to update player count of room %s: HTTP %d", room_code, response.status_code)

    async def _compress(self, state: dict[str, Any]) -> str:
        if self._worker is not None:
            compressed = await self._worker.serialize_compress_encoded(state)
        else:
            compressed = compress_state(state, encoded=True)
        check_state_size(compressed, self.max_state_bytes)
        return compressed

    def _check_write(self, response: httpx.Response, room_code: str, compressed: str) -> bool:
        if response.status_code == 413:
            raise ConstraintError(size_bytes=byte_length(compressed), limit_bytes=self.max_state_bytes)
        if response.is_error:
            logger.error("Write to room %s failed: HTTP %d", room_code, response.status_code)
            return False
        return True
