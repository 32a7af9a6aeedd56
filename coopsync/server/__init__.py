"""Relay server and room persistence for co-op parks."""

from .config import ServerSettings, load_settings
from .models import RoomRecord
from .store import InMemoryRoomStore, PostgresRoomStore, RoomStore, create_store

__all__ = [
    "create_store",
    "InMemoryRoomStore",
    "load_settings",
    "PostgresRoomStore",
    "RoomRecord",
    "RoomStore",
    "ServerSettings",
]
