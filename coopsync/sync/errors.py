"""Error taxonomy and result type for the sync layer."""

from __future__ import annotations

from dataclasses import dataclass


class SyncError(Exception):
    """Base class for sync layer failures."""


class ConnectError(SyncError):
    """The transport could not be reached while creating or joining a room."""


class SendError(SyncError):
    """A best-effort publish failed. Logged, never surfaced to the user."""


class WorkerError(SyncError):
    """The compression worker failed a request."""


class ConstraintError(SyncError):
    """A compressed snapshot exceeds the persisted size ceiling."""

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        size_mb = size_bytes / (1024 * 1024)
        limit_mb = limit_bytes / (1024 * 1024)
        super().__init__(f"Park size ({size_mb:.2f}MB) exceeds maximum allowed size ({limit_mb:.0f}MB)")
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: SyncError | None = None

    @classmethod
    def success(cls) -> SendResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, error: SyncError) -> SendResult:
        return cls(ok=False, error=error)
