"""Client-side multiplayer state synchronization."""

from .actions import (
    Action,
    Bulldoze,
    CancelCoasterBuild,
    FinishCoasterBuild,
    Place,
    PlaceBatch,
    Placement,
    RemoteAction,
    SetParkSettings,
    SetSpeed,
    StartCoasterBuild,
    parse_action,
)
from .batcher import ActionBatcher
from .channel import ChannelCallbacks, ChannelProvider, InMemoryPubSub, PubSubTransport
from .config import BATCH_FLUSH_INTERVAL, BATCH_MAX_SIZE, SyncSettings, load_settings
from .engine import Simulation, apply_remote_action, apply_remote_message
from .errors import ConnectError, ConstraintError, SendError, SendResult, SyncError, WorkerError
from .models import ConnectionState, Player, Room, RoomDescriptor
from .persistence import HttpRoomStore, RoomArchive, StoredRoom
from .relay import RelayTransport
from .session import ActionInbox, SessionCoordinator
from .snapshot import InMemorySavedParksIndex, ParkMeta, SavedParksIndex, SnapshotBroadcaster
from .worker import CompressionWorker

__all__ = [
    "Action",
    "ActionBatcher",
    "ActionInbox",
    "apply_remote_action",
    "apply_remote_message",
    "BATCH_FLUSH_INTERVAL",
    "BATCH_MAX_SIZE",
    "Bulldoze",
    "CancelCoasterBuild",
    "ChannelCallbacks",
    "ChannelProvider",
    "CompressionWorker",
    "ConnectError",
    "ConnectionState",
    "ConstraintError",
    "FinishCoasterBuild",
    "HttpRoomStore",
    "InMemoryPubSub",
    "InMemorySavedParksIndex",
    "load_settings",
    "ParkMeta",
    "parse_action",
    "Place",
    "PlaceBatch",
    "Placement",
    "Player",
    "PubSubTransport",
    "RelayTransport",
    "RemoteAction",
    "Room",
    "RoomArchive",
    "RoomDescriptor",
    "SavedParksIndex",
    "SendError",
    "SendResult",
    "SessionCoordinator",
    "SetParkSettings",
    "SetSpeed",
    "Simulation",
    "SnapshotBroadcaster",
    "StartCoasterBuild",
    "StoredRoom",
    "SyncError",
    "SyncSettings",
    "WorkerError",
]
