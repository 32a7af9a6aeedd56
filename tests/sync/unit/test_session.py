import asyncio

import pytest

from coopsync.sync.actions import Place, RemoteAction, SetSpeed
from coopsync.sync.channel import InMemoryPubSub
from coopsync.sync.config import MAX_STATE_BYTES, SyncSettings
from coopsync.sync.errors import ConstraintError
from coopsync.sync.models import ConnectionState
from coopsync.sync.persistence import HttpRoomStore, StoredRoom
from coopsync.sync.relay import RelayTransport
from coopsync.sync.session import ActionInbox, SessionCoordinator
from coopsync.sync.snapshot import InMemorySavedParksIndex

FAST = SyncSettings(batch_flush_interval=0.01, snapshot_interval=60.0, index_interval=60.0)


class _OversizedArchive:
    """Room archive that accepts new rooms but rejects every snapshot as too large."""

    def __init__(self) -> None:
        self.created: list[str] = []

    async def create_room(self, room_code: str, park_name: str, state: dict) -> bool:
        self.created.append(room_code)
        return True

    async def load_room(self, room_code: str) -> StoredRoom | None:
        return None

    async def update_room(self, room_code: str, state: dict) -> bool:
        raise ConstraintError(25 * 1024 * 1024, MAX_STATE_BYTES)

    async def update_player_count(self, room_code: str, count: int) -> None:
        return None


def _published_of_type(pubsub: InMemoryPubSub, kind: str) -> list[dict]:
    return [message for _, message in pubsub.published if message.get("type") == kind]


@pytest.mark.asyncio
async def test_create_join_and_leave_room(make_simulation, settle) -> None:
    pubsub = InMemoryPubSub()
    host = SessionCoordinator(pubsub, FAST, player_name="Host")
    guest = SessionCoordinator(pubsub, FAST, player_name="Guest")
    park = make_simulation().serialize_state()

    code = await host.create_room("Lakeside", park)
    descriptor = await guest.join_room(f"  {code.lower()} ")
    await settle()

    assert code is not None and len(code) == 6
    assert host.is_host is True
    assert host.room.display_name == "Lakeside"
    assert descriptor is not None and descriptor.code == code
    assert guest.connection_state is ConnectionState.CONNECTED
    assert guest.initial_state == park
    assert {player.name for player in guest.players} == {"Host", "Guest"}

    await guest.leave_room()
    await guest.leave_room()
    await settle()

    assert guest.connection_state is ConnectionState.DISCONNECTED
    assert guest.room_code is None
    assert guest.initial_state is None
    assert [player.name for player in host.players] == ["Host"]
    await host.close()


@pytest.mark.asyncio
async def test_join_failure_returns_none_and_sets_error() -> None:
    session = SessionCoordinator(InMemoryPubSub(fail_connect=True), FAST)

    descriptor = await session.join_room("zzzzzz")

    assert descriptor is None
    assert session.connection_state is ConnectionState.ERROR
    assert session.error


class _BrokenArchive(_OversizedArchive):
    """Room archive whose stored record cannot be read."""

    async def load_room(self, room_code: str) -> StoredRoom | None:
        raise KeyError("game_state")


@pytest.mark.asyncio
async def test_join_with_unreadable_archive_fails_and_unsubscribes() -> None:
    pubsub = InMemoryPubSub()
    session = SessionCoordinator(pubsub, FAST, room_store=_BrokenArchive())

    descriptor = await session.join_room("ABC123")

    assert descriptor is None
    assert session.connection_state is ConnectionState.ERROR
    assert "Failed to load room ABC123" in session.error
    assert pubsub.members("ABC123") == []
    assert session.connected is False


@pytest.mark.asyncio
async def test_create_failure_returns_none() -> None:
    session = SessionCoordinator(InMemoryPubSub(fail_connect=True), FAST)

    assert await session.create_room("Lakeside", {"id": "park-1"}) is None
    assert session.connection_state is ConnectionState.ERROR


@pytest.mark.asyncio
async def test_join_rejects_malformed_room_code() -> None:
    pubsub = InMemoryPubSub()
    session = SessionCoordinator(pubsub, FAST)

    assert await session.join_room("abc") is None
    assert session.connection_state is ConnectionState.ERROR
    assert "Invalid room code" in session.error
    assert pubsub.published == []


@pytest.mark.asyncio
async def test_identical_actions_within_window_are_sent_once() -> None:
    now = [100.0]
    pubsub = InMemoryPubSub()
    session = SessionCoordinator(pubsub, FAST, clock=lambda: now[0])
    await session.create_room("Lakeside", {"id": "park-1"})

    first = session.dispatch_action(SetSpeed(speed=2))
    second = session.dispatch_action(SetSpeed(speed=2))
    await session.drain()

    assert (first, second) == (True, False)
    assert len(_published_of_type(pubsub, "setSpeed")) == 1

    now[0] += 0.5
    assert session.dispatch_action(SetSpeed(speed=2)) is True
    await session.drain()
    assert len(_published_of_type(pubsub, "setSpeed")) == 2
    await session.close()


@pytest.mark.asyncio
async def test_different_actions_are_not_debounced() -> None:
    now = [100.0]
    pubsub = InMemoryPubSub()
    session = SessionCoordinator(pubsub, FAST, clock=lambda: now[0])
    await session.create_room("Lakeside", {"id": "park-1"})

    session.dispatch_action(SetSpeed(speed=2))
    session.dispatch_action(SetSpeed(speed=3))
    await session.drain()

    assert [message["speed"] for message in _published_of_type(pubsub, "setSpeed")] == [2, 3]
    await session.close()


@pytest.mark.asyncio
async def test_dispatch_without_room_is_a_no_op() -> None:
    session = SessionCoordinator(InMemoryPubSub(), FAST)

    assert session.dispatch_action(SetSpeed(speed=1)) is False
    result = await session.update_game_state({"id": "park-1"})
    assert result.ok is False


@pytest.mark.asyncio
async def test_drag_placements_replicate_to_guest(make_simulation, settle) -> None:
    pubsub = InMemoryPubSub()
    host_sim, guest_sim = make_simulation(), make_simulation()
    host = SessionCoordinator(pubsub, FAST, player_name="Host")
    guest = SessionCoordinator(pubsub, FAST, player_name="Guest")
    code = await host.create_room("Lakeside", host_sim.serialize_state())
    await guest.join_room(code)
    await settle()
    host.attach_simulation(host_sim)
    guest.attach_simulation(guest_sim)
    host_sim.local_hook = host.record_placement
    guest_sim.local_hook = guest.record_placement

    host_sim.set_tool("path")
    for x in range(5):
        host_sim.place_at_tile(x, 0)
    await asyncio.sleep(0.05)
    await host.drain()
    await settle()

    assert guest_sim.state["tiles"] == {f"{x},0": "path" for x in range(5)}
    assert guest_sim.local_calls == []
    assert len(_published_of_type(pubsub, "placeBatch")) == 1
    await guest.close()
    await host.close()


@pytest.mark.asyncio
async def test_guest_loads_state_that_arrives_after_attach(make_simulation, settle) -> None:
    pubsub = InMemoryPubSub()
    guest_sim = make_simulation()
    host = SessionCoordinator(pubsub, FAST)
    guest = SessionCoordinator(pubsub, FAST)
    park = make_simulation("park-host").serialize_state()
    park["tiles"]["3,3"] = "shop"
    code = await host.create_room("Lakeside", park)

    guest.attach_simulation(guest_sim)
    await guest.join_room(code)
    await settle()

    assert guest_sim.state == park
    assert guest_sim.loaded == [park]
    await guest.close()
    await host.close()


@pytest.mark.asyncio
async def test_actions_received_before_attach_survive_initial_load(make_simulation, settle) -> None:
    pubsub = InMemoryPubSub()
    host = SessionCoordinator(pubsub, FAST)
    guest = SessionCoordinator(pubsub, FAST)
    code = await host.create_room("Lakeside", make_simulation().serialize_state())
    await guest.join_room(code)
    await settle()

    host.dispatch_action(Place(x=9, y=9, tool="shop"))
    await host.drain()
    await settle()
    assert guest.inbox.backlog_size == 1

    guest_sim = make_simulation()
    guest.attach_simulation(guest_sim)

    assert guest_sim.loaded == [guest.initial_state]
    assert guest_sim.state["tiles"]["9,9"] == "shop"
    assert guest.inbox.backlog_size == 0
    await guest.close()
    await host.close()


@pytest.mark.asyncio
async def test_same_tile_conflict_is_reconciled_by_host_snapshot(make_simulation, settle) -> None:
    pubsub = InMemoryPubSub()
    host_sim, guest_sim = make_simulation(), make_simulation()
    host = SessionCoordinator(pubsub, FAST)
    guest = SessionCoordinator(pubsub, FAST)
    code = await host.create_room("Lakeside", host_sim.serialize_state())
    await guest.join_room(code)
    await settle()
    host.attach_simulation(host_sim)
    guest.attach_simulation(guest_sim)
    host_sim.local_hook = host.record_placement
    guest_sim.local_hook = guest.record_placement

    host_sim.set_tool("path")
    guest_sim.set_tool("tree")
    host_sim.place_at_tile(7, 7)
    guest_sim.place_at_tile(7, 7)
    await asyncio.sleep(0.05)
    await host.drain()
    await guest.drain()
    await settle()

    assert host_sim.state["tiles"]["7,7"] == "path"
    assert guest_sim.state["tiles"]["7,7"] == "tree"

    assert await host.sync_state() is True
    await settle()

    assert guest_sim.state == host_sim.state
    await guest.close()
    await host.close()


@pytest.mark.asyncio
async def test_guest_sync_updates_index_without_broadcasting(make_simulation, settle) -> None:
    pubsub = InMemoryPubSub()
    saved = InMemorySavedParksIndex()
    host = SessionCoordinator(pubsub, FAST)
    guest = SessionCoordinator(pubsub, FAST, saved_parks=saved)
    code = await host.create_room("Lakeside", make_simulation().serialize_state())
    await guest.join_room(code)
    await settle()
    guest.attach_simulation(make_simulation())
    states_before = len(_published_of_type(pubsub, "state"))

    pushed = await guest.sync_state()

    assert pushed is False
    assert len(_published_of_type(pubsub, "state")) == states_before
    assert saved.find(code) is not None
    await guest.close()
    await host.close()


@pytest.mark.asyncio
async def test_oversized_snapshot_sets_error_and_propagates(make_simulation) -> None:
    session = SessionCoordinator(InMemoryPubSub(), FAST, room_store=_OversizedArchive())
    await session.create_room("Lakeside", {"id": "park-1"})
    session.attach_simulation(make_simulation())

    with pytest.raises(ConstraintError):
        await session.sync_state()

    assert "exceeds maximum allowed size" in session.error
    await session.close()


@pytest.mark.asyncio
async def test_transport_error_moves_session_to_error(settle) -> None:
    pubsub = InMemoryPubSub()
    session = SessionCoordinator(pubsub, FAST)
    code = await session.create_room("Lakeside", {"id": "park-1"})

    pubsub.fail_room(code, "relay went away")
    await settle()

    assert session.connection_state is ConnectionState.ERROR
    assert session.error == "relay went away"
    await session.close()
    assert session.connection_state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_leave_flushes_pending_placements() -> None:
    pubsub = InMemoryPubSub()
    session = SessionCoordinator(pubsub, SyncSettings(batch_flush_interval=10.0))
    await session.create_room("Lakeside", {"id": "park-1"})

    session.record_placement(2, 3, "path")
    await session.leave_room()

    places = _published_of_type(pubsub, "place")
    assert [(message["x"], message["y"], message["tool"]) for message in places] == [(2, 3, "path")]
    assert places[0]["playerId"] == session.player.id


@pytest.mark.asyncio
async def test_change_listeners_can_unsubscribe() -> None:
    session = SessionCoordinator(InMemoryPubSub(), FAST)
    seen: list[str] = []
    unsubscribe = session.on_change(lambda name, value: seen.append(name))

    await session.create_room("Lakeside", {"id": "park-1"})
    unsubscribe()
    unsubscribe()
    await session.leave_room()

    assert "connection_state" in seen
    assert "room_code" in seen
    assert seen.count("connection_state") == 2


def test_inbox_allows_a_single_subscriber_and_replays_backlog() -> None:
    inbox = ActionInbox()
    received: list[RemoteAction] = []
    remote = RemoteAction(action=Place(x=1, y=1, tool="path"), timestamp=1.0, player_id="player-a")

    inbox.deliver(remote)
    inbox.subscribe(received.append)

    assert received == [remote]
    assert inbox.backlog_size == 0
    with pytest.raises(RuntimeError):
        inbox.subscribe(received.append)

    inbox.unsubscribe()
    inbox.deliver(remote)
    assert inbox.backlog_size == 1


@pytest.mark.asyncio
async def test_from_settings_wires_relay_worker_and_room_api() -> None:
    settings = SyncSettings(relay_url="ws://relay.test", room_api_url="http://relay.test", worker_timeout=3.0)

    session = SessionCoordinator.from_settings(settings)

    assert isinstance(session._transport, RelayTransport)
    assert session._transport.base_url == "ws://relay.test"
    assert isinstance(session._room_store, HttpRoomStore)
    assert session.worker.timeout == 3.0

    session.worker.start()
    await session.close()
    assert session.worker.running is False


@pytest.mark.asyncio
async def test_from_settings_without_room_api_has_no_room_store() -> None:
    session = SessionCoordinator.from_settings(SyncSettings())

    assert session._room_store is None
    await session.close()
