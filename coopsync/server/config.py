"""Configuration helpers for the relay server."""

from __future__ import annotations

import os
from dataclasses import dataclass

from coopsync.sync.config import MAX_STATE_BYTES


@dataclass(frozen=True)
class ServerSettings:
    database_url: str | None
    host: str
    port: int
    max_state_bytes: int


def load_settings() -> ServerSettings:
    port_raw = os.getenv("COOPSYNC_PORT", "8000")
    return ServerSettings(
        database_url=os.getenv("COOPSYNC_DATABASE_URL"),
        host=os.getenv("COOPSYNC_HOST", "127.0.0.1"),
        port=int(port_raw),
        max_state_bytes=int(os.getenv("COOPSYNC_MAX_STATE_BYTES", str(MAX_STATE_BYTES))),
    )
