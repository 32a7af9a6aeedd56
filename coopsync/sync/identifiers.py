"""Room code and player identity helpers."""

from __future__ import annotations

import re
import secrets
import string

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6}$")

PLAYER_COLORS = (
    "#E74C3C",
    "#3498DB",
    "#2ECC71",
    "#F39C12",
    "#9B59B6",
    "#1ABC9C",
    "#E67E22",
    "#34495E",
)


def generate_room_code() -> str:
    """Generate a 6 character uppercase alphanumeric room code."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def normalize_room_code(code: str) -> str:
    return code.strip().upper()


def is_valid_room_code(code: str) -> bool:
    return ROOM_CODE_PATTERN.match(code) is not None


def generate_player_id() -> str:
    return f"player-{secrets.token_hex(6)}"


def pick_player_color() -> str:
    return secrets.choice(PLAYER_COLORS)
