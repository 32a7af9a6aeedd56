"""Pub/sub transport over the relay server's room WebSocket."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .channel import ErrorHandler, MessageHandler, PresenceHandler
from .errors import ConnectError, SendError
from .models import Player

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class RelayTransport:
    """Connects each subscription to ``{base_url}/ws/rooms/{room_code}``."""

    def __init__(self, base_url: str, connect: Connector = websocket_connect) -> None:
        self.base_url = base_url.rstrip("/")
        self._connect = connect

    def room_url(self, room_code: str, player: Player) -> str:
        query = urlencode({"player_id": player.id, "name": player.name, "color": player.color})
        return f"{self.base_url}/ws/rooms/{room_code}?{query}"

    async def subscribe(
        self,
        room_code: str,
        player: Player,
        on_message: MessageHandler,
        on_presence: PresenceHandler,
        on_error: ErrorHandler,
    ) -> RelaySubscription:
        url = self.room_url(room_code, player)
        try:
            connection = await self._connect(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise ConnectError(f"Could not connect to room {room_code}: {exc}") from exc
        subscription = RelaySubscription(connection, room_code, on_message, on_presence, on_error)
        subscription.start()
        return subscription


class RelaySubscription:
    def __init__(
        self,
        connection: Any,
        room_code: str,
        on_message: MessageHandler,
        on_presence: PresenceHandler,
        on_error: ErrorHandler,
    ) -> None:
        self.room_code = room_code
        self._connection = connection
        self._on_message = on_message
        self._on_presence = on_presence
        self._on_error = on_error
        self._reader: asyncio.Task[None] | None = None
        self._closing = False

    def start(self) -> None:
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def publish(self, message: dict[str, Any]) -> None:
        try:
            await self._connection.send(json.dumps(message))
        except (ConnectionClosed, OSError) as exc:
            raise SendError(f"Publish to room {self.room_code} failed: {exc}") from exc

    async def close(self) -> None:
        self._closing = True
        try:
            await self._connection.close()
        except (ConnectionClosed, OSError) as exc:
            logger.debug("Ignoring error while closing room %s: %s", self.room_code, exc)
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None

    async def _read_loop(self) -> None:
        try:
            async for raw in self._connection:
                try:
                    self._handle(raw)
                except Exception:
                    logger.exception("Handler failed for frame from room %s", self.room_code)
        except ConnectionClosed as exc:
            if not self._closing:
                self._on_error(f"Connection to room {self.room_code} lost: {exc}")
            return
        if not self._closing:
            self._on_error(f"Connection to room {self.room_code} closed")

    def _handle(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropping non-JSON frame from room %s", self.room_code)
            return
        if not isinstance(message, dict):
            logger.warning("Dropping non-object frame from room %s", self.room_code)
            return
        if message.get("type") == "presence":
            players = message.get("players") or []
            self._on_presence([Player.from_wire(item) for item in players if isinstance(item, dict)])
            return
        self._on_message(message)
