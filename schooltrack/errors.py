"""Exception taxonomy shared by the store, codec and backup layers."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "BackupInProgress",
    "MalformedSnapshot",
    "NotFound",
    "RemoteUploadFailure",
    "SchoolTrackError",
    "StorageFailure",
]


class SchoolTrackError(Exception):
    """Base class for every error raised by :mod:`schooltrack`."""


class StorageFailure(SchoolTrackError, RuntimeError):
    """The durable store is unreachable, out of space or corrupt."""


class NotFound(SchoolTrackError, KeyError):
    """A lookup referenced an id that is not stored."""

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} has no item with id {item_id!r}")
        self.kind = kind
        self.item_id = item_id

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class MalformedSnapshot(SchoolTrackError, ValueError):
    """A restore document is missing keys or has rows of the wrong shape."""


class RemoteUploadFailure(SchoolTrackError, RuntimeError):
    """The remote leg of a backup failed (non-2xx response or network error)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        prefix = "Remote upload failed"
        if status_code is not None:
            prefix = f"{prefix} (HTTP {status_code})"
        super().__init__(f"{prefix}: {message}")
        self.message = message
        self.status_code = status_code


class BackupInProgress(SchoolTrackError, RuntimeError):
    """A backup was requested while another one is still running."""
