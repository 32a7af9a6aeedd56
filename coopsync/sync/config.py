"""Configuration helpers for the client sync layer."""

from __future__ import annotations

import os
from dataclasses import dataclass

BATCH_FLUSH_INTERVAL = 0.1
BATCH_MAX_SIZE = 100
DEDUPE_WINDOW = 0.1
SNAPSHOT_INTERVAL = 2.0
INDEX_INTERVAL = 10.0
WORKER_TIMEOUT = 15.0
MAX_STATE_BYTES = 20 * 1024 * 1024
DEFAULT_RELAY_URL = "ws://127.0.0.1:8000"
DEFAULT_PLAYER_NAME = "Player"
DEFAULT_PARK_NAME = "Co-op Park"


@dataclass(frozen=True)
class SyncSettings:
    batch_flush_interval: float = BATCH_FLUSH_INTERVAL
    batch_max_size: int = BATCH_MAX_SIZE
    dedupe_window: float = DEDUPE_WINDOW
    snapshot_interval: float = SNAPSHOT_INTERVAL
    index_interval: float = INDEX_INTERVAL
    worker_timeout: float = WORKER_TIMEOUT
    max_state_bytes: int = MAX_STATE_BYTES
    relay_url: str = DEFAULT_RELAY_URL
    room_api_url: str | None = None
    player_name: str = DEFAULT_PLAYER_NAME


def load_settings() -> SyncSettings:
    return SyncSettings(
        batch_flush_interval=float(os.getenv("COOPSYNC_BATCH_FLUSH_INTERVAL", str(BATCH_FLUSH_INTERVAL))),
        batch_max_size=int(os.getenv("COOPSYNC_BATCH_MAX_SIZE", str(BATCH_MAX_SIZE))),
        dedupe_window=float(os.getenv("COOPSYNC_DEDUPE_WINDOW", str(DEDUPE_WINDOW))),
        snapshot_interval=float(os.getenv("COOPSYNC_SNAPSHOT_INTERVAL", str(SNAPSHOT_INTERVAL))),
        index_interval=float(os.getenv("COOPSYNC_INDEX_INTERVAL", str(INDEX_INTERVAL))),
        worker_timeout=float(os.getenv("COOPSYNC_WORKER_TIMEOUT", str(WORKER_TIMEOUT))),
        max_state_bytes=int(os.getenv("COOPSYNC_MAX_STATE_BYTES", str(MAX_STATE_BYTES))),
        relay_url=os.getenv("COOPSYNC_RELAY_URL", DEFAULT_RELAY_URL),
        room_api_url=os.getenv("COOPSYNC_ROOM_API_URL"),
        player_name=os.getenv("COOPSYNC_PLAYER_NAME", DEFAULT_PLAYER_NAME),
    )
