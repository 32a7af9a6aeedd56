"""Session coordinator: room lifecycle and the public sync API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from .actions import Action, RemoteAction, action_key
from .batcher import ActionBatcher
from .channel import ChannelCallbacks, ChannelProvider, PubSubTransport
from .config import DEFAULT_PARK_NAME, SyncSettings, load_settings
from .engine import Simulation, apply_remote_action
from .errors import ConnectError, ConstraintError, SendError, SendResult
from .identifiers import generate_room_code, is_valid_room_code, normalize_room_code
from .models import ConnectionState, Player, Room, RoomDescriptor
from .persistence import HttpRoomStore, RoomArchive
from .relay import RelayTransport
from .snapshot import SavedParksIndex, SnapshotBroadcaster
from .worker import CompressionWorker

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, Any], None]


class ActionInbox:
    """Single-subscriber channel carrying remote actions to the simulation.

    Actions that arrive before anyone subscribes are kept (up to
    ``capacity``) and handed over on subscribe.
    """

    def __init__(self, capacity: int = 1000) -> None:
        self._handler: Callable[[RemoteAction], None] | None = None
        self._backlog: deque[RemoteAction] = deque(maxlen=capacity)

    @property
    def subscribed(self) -> bool:
        return self._handler is not None

    @property
    def backlog_size(self) -> int:
        return len(self._backlog)

    def subscribe(self, handler: Callable[[RemoteAction], None]) -> None:
        if self._handler is not None:
            raise RuntimeError("ActionInbox already has a subscriber")
        self._handler = handler
        while self._backlog:
            handler(self._backlog.popleft())

    def unsubscribe(self) -> None:
        self._handler = None

    def deliver(self, remote: RemoteAction) -> None:
        if self._handler is None:
            self._backlog.append(remote)
            return
        self._handler(remote)

    def clear(self) -> None:
        self._backlog.clear()


class SessionCoordinator:
    """Owns one peer's multiplayer session.

    Reactive fields (``connection_state``, ``room_code``, ``players``,
    ``error``, ``initial_state``) are plain attributes; listeners registered
    with :meth:`on_change` are told about every change.

    The attached simulation reports its own, locally originated edits through
    :meth:`record_placement` and :meth:`submit_action`. Edits applied on
    behalf of peers are flagged ``is_remote`` and must not be reported.
    """

    def __init__(
        self,
        transport: PubSubTransport,
        settings: SyncSettings | None = None,
        room_store: RoomArchive | None = None,
        saved_parks: SavedParksIndex | None = None,
        player_name: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        worker: CompressionWorker | None = None,
    ) -> None:
        self.settings = settings if settings is not None else SyncSettings()
        self.player = Player.local(player_name or self.settings.player_name)
        self.inbox = ActionInbox()
        self.batcher = ActionBatcher(
            sink=self.dispatch_action,
            flush_interval=self.settings.batch_flush_interval,
            max_size=self.settings.batch_max_size,
        )
        self.snapshots = SnapshotBroadcaster(
            push=self.update_game_state,
            index=saved_parks,
            interval=self.settings.snapshot_interval,
            index_interval=self.settings.index_interval,
            clock=clock,
        )
        self._transport = transport
        self._room_store = room_store
        self.worker = worker
        self._owned_room_store: HttpRoomStore | None = None
        self._clock = clock
        self._listeners: list[ChangeListener] = []
        self._provider: ChannelProvider | None = None
        self._simulation: Simulation | None = None
        self._loaded_state: dict[str, Any] | None = None
        self._snapshot_task: asyncio.Task[None] | None = None
        self._sends: set[asyncio.Task[None]] = set()
        self._last_action_key: str | None = None
        self._last_action_at = 0.0

        self.connection_state = ConnectionState.DISCONNECTED
        self.room: Room | None = None
        self.room_code: str | None = None
        self.players: list[Player] = []
        self.error: str | None = None
        self.initial_state: dict[str, Any] | None = None
        self.is_host = False

    @property
    def connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED and self._provider is not None

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings | None = None,
        saved_parks: SavedParksIndex | None = None,
    ) -> SessionCoordinator:
        """Build a session talking to the relay and room API named in ``settings``.

        The session owns its compression worker and room store client and
        releases both in :meth:`close`.
        """
        settings = settings if settings is not None else load_settings()
        worker = CompressionWorker(timeout=settings.worker_timeout)
        room_store = None
        if settings.room_api_url:
            room_store = HttpRoomStore(settings.room_api_url, worker=worker, max_state_bytes=settings.max_state_bytes)
        session = cls(
            RelayTransport(settings.relay_url),
            settings,
            room_store=room_store,
            saved_parks=saved_parks,
            worker=worker,
        )
        session._owned_room_store = room_store
        return session

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener for reactive field changes. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def create_room(self, park_name: str, initial_state: dict[str, Any]) -> str | None:
        """Open a new room seeded with ``initial_state``.

        Returns the room code, or None when the room could not be opened; in
        that case ``connection_state`` is ``error`` and ``error`` says why.
        """
        await self.leave_room()
        self._update(connection_state=ConnectionState.CONNECTING, error=None)
        room_code = generate_room_code()
        try:
            provider = await ChannelProvider.create(
                self._transport,
                room_code,
                self.player,
                initial_state,
                self._channel_callbacks(),
                room_store=self._room_store,
                park_name=park_name,
            )
        except (ConnectError, ConstraintError) as exc:
            self._fail(str(exc) or "Failed to create room")
            return None

        self._provider = provider
        self.is_host = True
        self._loaded_state = initial_state
        self._update(
            room=Room(code=room_code, display_name=park_name),
            room_code=room_code,
            connection_state=ConnectionState.CONNECTED,
        )
        self._start_snapshot_loop()
        return room_code

    async def join_room(self, code: str) -> RoomDescriptor | None:
        """Join an existing room as a guest.

        Does not wait for the room's state; it shows up in ``initial_state``
        (and is loaded into an attached simulation) once a peer sends it.
        """
        await self.leave_room()
        normalized = normalize_room_code(code)
        self._update(connection_state=ConnectionState.CONNECTING, error=None)
        if not is_valid_room_code(normalized):
            self._fail(f"Invalid room code: {code!r}")
            return None
        try:
            provider = await ChannelProvider.join(
                self._transport,
                normalized,
                self.player,
                self._channel_callbacks(),
                room_store=self._room_store,
            )
        except ConnectError as exc:
            self._fail(str(exc) or "Failed to join room")
            return None

        self._provider = provider
        self.is_host = False
        self._update(
            room=Room(code=normalized, display_name=DEFAULT_PARK_NAME),
            room_code=normalized,
            connection_state=ConnectionState.CONNECTED,
        )
        self._start_snapshot_loop()
        return RoomDescriptor(
            code=normalized,
            host_id="",
            park_name=DEFAULT_PARK_NAME,
            created_at=time.time() * 1000,
            player_count=max(len(provider.players), 1),
        )

    async def leave_room(self) -> None:
        """Leave the current room, if any, and reset the session. Idempotent."""
        provider = self._provider
        if provider is not None and self.connected:
            self.batcher.flush()
            await self.drain()
        self.batcher.reset()
        self._stop_snapshot_loop()
        self._provider = None
        for task in list(self._sends):
            task.cancel()
        self._sends.clear()
        if provider is not None:
            await provider.destroy()
            logger.info("Left room %s", provider.room_code)

        self.inbox.clear()
        self.snapshots.reset()
        self.is_host = False
        self._loaded_state = None
        self._last_action_key = None
        self._last_action_at = 0.0
        self._update(
            connection_state=ConnectionState.DISCONNECTED,
            room=None,
            room_code=None,
            players=[],
            error=None,
            initial_state=None,
        )

    def dispatch_action(self, action: Action) -> bool:
        """Send ``action`` to the room, fire-and-forget.

        An action identical to the previous one within ``dedupe_window``
        seconds is dropped. Returns True when a send was scheduled.
        """
        provider = self._provider
        if provider is None or not self.connected:
            logger.debug("Not connected, dropping %s", action.type)
            return False

        key = action_key(action)
        now = self._clock()
        if key == self._last_action_key and now - self._last_action_at < self.settings.dedupe_window:
            logger.debug("Dropping duplicate %s within debounce window", action.type)
            return False
        self._last_action_key = key
        self._last_action_at = now

        task = asyncio.get_running_loop().create_task(self._send(provider, action))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return True

    async def drain(self) -> None:
        """Wait for scheduled sends to complete."""
        while self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)

    async def update_game_state(self, state: dict[str, Any]) -> SendResult:
        """Broadcast a full snapshot. A ConstraintError from persistence propagates."""
        if self._provider is None:
            return SendResult.failure(SendError("Not connected to a room"))
        return await self._provider.update_game_state(state)

    def record_placement(self, x: int, y: int, tool: str) -> None:
        """Local placement hook for the simulation."""
        if not self.connected:
            return
        self.batcher.record_placement(x, y, tool)

    def submit_action(self, action: Action) -> None:
        """Local hook for non-placement actions; flushes pending placements first."""
        if not self.connected:
            return
        self.batcher.submit(action)

    def attach_simulation(self, simulation: Simulation) -> None:
        self.detach_simulation()
        self._simulation = simulation
        if self.initial_state is not None:
            self._load_state(self.initial_state)
        self.inbox.subscribe(lambda remote: apply_remote_action(remote.action, simulation))
        self._start_snapshot_loop()

    def detach_simulation(self) -> None:
        if self._simulation is None:
            return
        self._stop_snapshot_loop()
        self.inbox.unsubscribe()
        self._simulation = None

    async def sync_state(self, state: dict[str, Any] | None = None) -> bool:
        """Offer the current state to the snapshot broadcaster.

        Only the host broadcasts; every peer refreshes the saved parks index.
        Returns True when the state was pushed.
        """
        if not self.connected:
            return False
        if state is None:
            if self._simulation is None:
                return False
            state = self._simulation.serialize_state()
        try:
            return await self.snapshots.maybe_push(state, self.room_code, broadcast=self.is_host)
        except ConstraintError as exc:
            self._update(error=str(exc))
            raise

    async def close(self) -> None:
        self.detach_simulation()
        await self.leave_room()
        if self.worker is not None:
            self.worker.close()
        if self._owned_room_store is not None:
            await self._owned_room_store.aclose()
            self._owned_room_store = None

    def _channel_callbacks(self) -> ChannelCallbacks:
        return ChannelCallbacks(
            on_connection_change=self._on_connection_change,
            on_players_change=lambda players: self._update(players=list(players)),
            on_action=self.inbox.deliver,
            on_state_received=self._on_state_received,
            on_error=self._fail,
        )

    def _on_connection_change(self, connected: bool) -> None:
        if connected:
            self._update(connection_state=ConnectionState.CONNECTED)
        elif self.connection_state is not ConnectionState.ERROR:
            self._update(connection_state=ConnectionState.DISCONNECTED)

    def _on_state_received(self, state: dict[str, Any]) -> None:
        self._update(initial_state=state)
        if self._simulation is not None:
            self._load_state(state)

    def _load_state(self, state: dict[str, Any]) -> None:
        if self._simulation is None or state == self._loaded_state:
            return
        logger.info("Loading snapshot received for room %s", self.room_code)
        if self._simulation.load_state(state):
            self._loaded_state = state
        else:
            logger.warning("Simulation rejected snapshot for room %s", self.room_code)

    def _fail(self, message: str) -> None:
        logger.error("Session error: %s", message)
        self.batcher.reset()
        self._stop_snapshot_loop()
        self._update(connection_state=ConnectionState.ERROR, error=message)

    async def _send(self, provider: ChannelProvider, action: Action) -> None:
        result = await provider.dispatch_action(action)
        if not result.ok:
            logger.debug("Action %s not delivered: %s", action.type, result.error)

    def _start_snapshot_loop(self) -> None:
        if self._snapshot_task is not None or self._simulation is None or not self.connected:
            return
        self._snapshot_task = asyncio.get_running_loop().create_task(self._snapshot_loop())

    def _stop_snapshot_loop(self) -> None:
        if self._snapshot_task is not None:
            self._snapshot_task.cancel()
            self._snapshot_task = None

    async def _snapshot_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.snapshot_interval)
            try:
                await self.sync_state()
            except ConstraintError as exc:
                logger.error("Snapshot for room %s not persisted: %s", self.room_code, exc)

    def _update(self, **changes: Any) -> None:
        for name, value in changes.items():
            if getattr(self, name) == value:
                continue
            setattr(self, name, value)
            for listener in list(self._listeners):
                listener(name, value)
