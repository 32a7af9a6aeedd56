"""Serialization and compression of game state snapshots."""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from typing import Any

from .config import MAX_STATE_BYTES
from .errors import ConstraintError


def serialize_state(state: dict[str, Any]) -> str:
    return json.dumps(state, separators=(",", ":"))


def deserialize_state(payload: str) -> dict[str, Any] | None:
    try:
        state = json.loads(payload)
    except ValueError:
        return None
    return state if isinstance(state, dict) else None


def compress_state(state: dict[str, Any], encoded: bool = False) -> str:
    """Serialize and compress ``state``.

    The encoded flavour is URL-safe and unpadded; it is what gets persisted
    to the room store and shipped over HTTP.
    """
    raw = zlib.compress(serialize_state(state).encode("utf-8"))
    if encoded:
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    return base64.b64encode(raw).decode("ascii")


def decompress_state(compressed: str, encoded: bool = False) -> dict[str, Any] | None:
    """Inverse of :func:`compress_state`. Returns None for undecodable input.

    Uncompressed JSON objects are accepted as-is for snapshots written before
    compression was introduced.
    """
    if compressed.startswith("{"):
        return deserialize_state(compressed)
    try:
        if encoded:
            padding = "=" * (-len(compressed) % 4)
            raw = base64.urlsafe_b64decode(compressed + padding)
        else:
            raw = base64.b64decode(compressed, validate=True)
        text = zlib.decompress(raw).decode("utf-8")
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError):
        return None
    return deserialize_state(text)


def byte_length(value: str) -> int:
    return len(value.encode("utf-8"))


def check_state_size(compressed: str, limit_bytes: int = MAX_STATE_BYTES) -> None:
    size = byte_length(compressed)
    if size > limit_bytes:
        raise ConstraintError(size_bytes=size, limit_bytes=limit_bytes)
