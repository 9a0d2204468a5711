"""Shared enums for notesync.

These values are written verbatim into note files and remote page
metadata, so their string forms are part of the on-disk format.
"""

from __future__ import annotations

from enum import Enum


class Provider(str, Enum):
    """Remote storage provider backing an account."""

    ONEDRIVE = "onedrive"
    BAIDUPAN = "baidupan"


class SyncStatus(str, Enum):
    """Sync status of a whole note."""

    NOT_SYNCED = "not_synced"
    SYNCING = "syncing"
    SYNCED = "synced"
    CONFLICT = "conflict"
    ERROR = "error"


class PageStatus(str, Enum):
    """Sync status of a single page."""

    NOT_SYNCED = "not_synced"
    SYNCED = "synced"
    PENDING = "pending"
    SYNCING = "syncing"
    ERROR = "error"
    CLOUD_NEWER = "cloud_newer"
    LOCAL_NEWER = "local_newer"


class RunState(str, Enum):
    """Lifecycle of one sync run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SyncOperation(str, Enum):
    """Operation reported in progress events and error entries."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    CONFLICT = "conflict"
