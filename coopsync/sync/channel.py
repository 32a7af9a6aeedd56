"""Channel provider wrapping the pub/sub transport for one room."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import ValidationError

from .actions import ACTION_TYPES, Action, RemoteAction, parse_remote_action, remote_action_to_wire
from .config import DEFAULT_PARK_NAME
from .errors import ConnectError, SendError, SendResult
from .models import Player
from .persistence import RoomArchive

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]
PresenceHandler = Callable[[list[Player]], None]
ErrorHandler = Callable[[str], None]


class Subscription(Protocol):
    async def publish(self, message: dict[str, Any]) -> None:
        """Publish a message to the room. Raises SendError on failure."""

    async def close(self) -> None:
        """Leave the room."""


class PubSubTransport(Protocol):
    async def subscribe(
        self,
        room_code: str,
        player: Player,
        on_message: MessageHandler,
        on_presence: PresenceHandler,
        on_error: ErrorHandler,
    ) -> Subscription:
        """Join the room channel and announce presence. Raises ConnectError."""


@dataclass
class ChannelCallbacks:
    on_connection_change: Callable[[bool], None] | None = None
    on_players_change: Callable[[list[Player]], None] | None = None
    on_action: Callable[[RemoteAction], None] | None = None
    on_state_received: Callable[[dict[str, Any]], None] | None = None
    on_error: Callable[[str], None] | None = None


def _wire_copy(message: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(message))


@dataclass
class _Member:
    player: Player
    on_message: MessageHandler
    on_presence: PresenceHandler
    on_error: ErrorHandler


class InMemoryPubSub:
    """In-process pub/sub transport.

    Delivery is asynchronous (scheduled on the running loop) and every
    message is copied through JSON as it would be on the wire. ``echo``
    delivers a peer's own messages back to it; ``drop`` discards messages
    for which it returns True, to simulate loss.
    """

    def __init__(
        self,
        echo: bool = False,
        fail_connect: bool = False,
        fail_publish: bool = False,
        drop: Callable[[dict[str, Any]], bool] | None = None,
    ) -> None:
        self.echo = echo
        self.fail_connect = fail_connect
        self.fail_publish = fail_publish
        self.drop = drop
        self.published: list[tuple[str, dict[str, Any]]] = []
        self._rooms: dict[str, dict[str, _Member]] = defaultdict(dict)

    async def subscribe(
        self,
        room_code: str,
        player: Player,
        on_message: MessageHandler,
        on_presence: PresenceHandler,
        on_error: ErrorHandler,
    ) -> InMemorySubscription:
        if self.fail_connect:
            raise ConnectError(f"Could not connect to room {room_code}")
        self._rooms[room_code][player.id] = _Member(player, on_message, on_presence, on_error)
        self._announce(room_code)
        return InMemorySubscription(self, room_code, player.id)

    def members(self, room_code: str) -> list[Player]:
        return [member.player for member in self._rooms.get(room_code, {}).values()]

    def fail_room(self, room_code: str, message: str) -> None:
        loop = asyncio.get_running_loop()
        for member in list(self._rooms.get(room_code, {}).values()):
            loop.call_soon(member.on_error, message)

    def _deliver(self, room_code: str, sender_id: str, message: dict[str, Any]) -> None:
        self.published.append((sender_id, _wire_copy(message)))
        if self.drop is not None and self.drop(message):
            return
        loop = asyncio.get_running_loop()
        target = message.get("to")
        for member in list(self._rooms.get(room_code, {}).values()):
            if member.player.id == sender_id and not self.echo:
                continue
            if target and member.player.id != target:
                continue
            loop.call_soon(member.on_message, _wire_copy(message))

    def _announce(self, room_code: str) -> None:
        loop = asyncio.get_running_loop()
        players = self.members(room_code)
        for member in list(self._rooms.get(room_code, {}).values()):
            loop.call_soon(member.on_presence, list(players))

    def _leave(self, room_code: str, player_id: str) -> None:
        room = self._rooms.get(room_code)
        if room is None or room.pop(player_id, None) is None:
            return
        if not room:
            self._rooms.pop(room_code, None)
            return
        self._announce(room_code)


class InMemorySubscription:
    def __init__(self, pubsub: InMemoryPubSub, room_code: str, player_id: str) -> None:
        self._pubsub = pubsub
        self._room_code = room_code
        self._player_id = player_id

    async def publish(self, message: dict[str, Any]) -> None:
        if self._pubsub.fail_publish:
            raise SendError(f"Publish to room {self._room_code} failed")
        self._pubsub._deliver(self._room_code, self._player_id, message)

    async def close(self) -> None:
        self._pubsub._leave(self._room_code, self._player_id)


class ChannelProvider:
    """One peer's connection to a room channel.

    The host keeps the most recent state it knows about and hands it to every
    peer that shows up in presence after it, so late joiners bootstrap
    without asking. Guests never publish state.
    """

    def __init__(
        self,
        room_code: str,
        player: Player,
        callbacks: ChannelCallbacks,
        is_host: bool,
        state: dict[str, Any] | None = None,
        room_store: RoomArchive | None = None,
    ) -> None:
        self.room_code = room_code
        self.player = player
        self.is_host = is_host
        self.players: list[Player] = []
        self._callbacks = callbacks
        self._latest_state = state
        self._room_store = room_store
        self._subscription: Subscription | None = None
        self._known_ids: set[str] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._destroyed = False

    @classmethod
    async def create(
        cls,
        transport: PubSubTransport,
        room_code: str,
        player: Player,
        initial_state: dict[str, Any],
        callbacks: ChannelCallbacks,
        room_store: RoomArchive | None = None,
        park_name: str = DEFAULT_PARK_NAME,
    ) -> ChannelProvider:
        provider = cls(room_code, player, callbacks, is_host=True, state=initial_state, room_store=room_store)
        if room_store is not None:
            await room_store.create_room(room_code, park_name, initial_state)
        await provider._connect(transport)
        return provider

    @classmethod
    async def join(
        cls,
        transport: PubSubTransport,
        room_code: str,
        player: Player,
        callbacks: ChannelCallbacks,
        room_store: RoomArchive | None = None,
    ) -> ChannelProvider:
        provider = cls(room_code, player, callbacks, is_host=False, room_store=room_store)
        await provider._connect(transport)
        if room_store is not None:
            try:
                stored = await room_store.load_room(room_code)
            except Exception as exc:
                await provider.destroy()
                raise ConnectError(f"Failed to load room {room_code}: {exc}") from exc
            if stored is not None and provider._latest_state is None:
                logger.info("Resuming room %s from storage", room_code)
                provider._receive_state(stored.state)
        return provider

    @property
    def connected(self) -> bool:
        return self._subscription is not None and not self._destroyed

    async def dispatch_action(self, action: Action) -> SendResult:
        message = remote_action_to_wire(action, timestamp=time.time() * 1000, player_id=self.player.id)
        return await self._publish(message)

    async def update_game_state(self, state: dict[str, Any]) -> SendResult:
        """Broadcast a full snapshot and persist it when a room store is configured.

        A ConstraintError from persistence propagates to the caller.
        """
        self._latest_state = state
        result = await self._publish({"type": "state", "state": state})
        if self._room_store is not None and not self._destroyed:
            await self._room_store.update_room(self.room_code, state)
        return result

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._callbacks = ChannelCallbacks()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        subscription = self._subscription
        self._subscription = None
        if subscription is not None:
            try:
                await subscription.close()
            except SendError as exc:
                logger.warning("Error while leaving room %s: %s", self.room_code, exc)

    async def _connect(self, transport: PubSubTransport) -> None:
        self._subscription = await transport.subscribe(
            self.room_code,
            self.player,
            self._on_message,
            self._on_presence,
            self._on_transport_error,
        )
        logger.info("Joined room %s as %s (host=%s)", self.room_code, self.player.id, self.is_host)
        if self._callbacks.on_connection_change is not None:
            self._callbacks.on_connection_change(True)

    async def _publish(self, message: dict[str, Any]) -> SendResult:
        if self._subscription is None or self._destroyed:
            return SendResult.failure(SendError(f"Channel for room {self.room_code} is closed"))
        try:
            await self._subscription.publish(message)
        except SendError as exc:
            logger.warning("Send to room %s failed: %s", self.room_code, exc)
            return SendResult.failure(exc)
        return SendResult.success()

    def _on_message(self, message: dict[str, Any]) -> None:
        if self._destroyed:
            return
        kind = message.get("type")
        if kind == "state":
            target = message.get("to")
            if target and target != self.player.id:
                return
            state = message.get("state")
            if not isinstance(state, dict):
                logger.warning("Dropping state message without a state object")
                return
            self._receive_state(state)
        elif kind == "presence":
            players = message.get("players")
            if isinstance(players, list):
                self._on_presence([Player.from_wire(item) for item in players if isinstance(item, dict)])
        elif kind in ACTION_TYPES:
            try:
                remote = parse_remote_action(message)
            except ValidationError as exc:
                logger.warning("Dropping malformed %s action: %s", kind, exc.errors())
                return
            if self._callbacks.on_action is not None:
                self._callbacks.on_action(remote)
        else:
            logger.warning("Dropping message of unknown type %r", kind)

    def _on_presence(self, players: list[Player]) -> None:
        if self._destroyed:
            return
        self.players = list(players)
        current_ids = {player.id for player in players}
        newcomers = [pid for pid in current_ids - self._known_ids if pid != self.player.id]
        self._known_ids = current_ids

        if self._callbacks.on_players_change is not None:
            self._callbacks.on_players_change(list(players))

        if not self.is_host:
            return
        if self._latest_state is not None:
            for player_id in newcomers:
                self._spawn(self._publish({"type": "state", "state": self._latest_state, "to": player_id}))
        if self._room_store is not None:
            self._spawn(self._room_store.update_player_count(self.room_code, len(players)))

    def _on_transport_error(self, message: str) -> None:
        if self._destroyed:
            return
        logger.error("Transport error in room %s: %s", self.room_code, message)
        if self._callbacks.on_error is not None:
            self._callbacks.on_error(message)

    def _receive_state(self, state: dict[str, Any]) -> None:
        self._latest_state = state
        if self._callbacks.on_state_received is not None:
            self._callbacks.on_state_received(state)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
