"""Provider-neutral client interface and remote object types."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from notesync.core.types import Provider

# (current, total) in provider-specific units: bytes for OneDrive, slices for Baidu
UploadProgress = Callable[[int, int], None]


@dataclass
class RemoteItem:
    """A file or folder in remote storage.

    Attributes:
        id: Provider-native object id (driveItem id, Baidu fs_id).
        name: Object name without folder.
        size: Size in bytes (0 for folders).
        modified_at: Last modification time in epoch milliseconds.
        is_folder: True for folders.
        path: Full remote path, when the provider reports it.
    """

    id: str
    name: str
    size: int = 0
    modified_at: int = 0
    is_folder: bool = False
    path: str | None = None


@dataclass
class StorageQuota:
    """Storage usage in bytes."""

    total: int
    used: int
    remaining: int

    @property
    def percent_used(self) -> float:
        return (self.used / self.total * 100.0) if self.total else 0.0


def iso_to_ms(value: str | None) -> int:
    """Convert an ISO-8601 timestamp (``...Z`` allowed) to epoch milliseconds."""
    if not value:
        return 0
    return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)


def join_remote_path(folder: str, name: str) -> str:
    """Join a remote folder and a child name with single slashes."""
    folder = folder.rstrip("/")
    name = name.lstrip("/")
    return f"{folder}/{name}" if folder else name


class ProviderClient(Protocol):
    """Operations the sync layer needs from a storage provider.

    Implementations map every provider failure onto the notesync error
    taxonomy; callers never see provider-native error payloads.
    """

    provider: Provider

    def list_files(self, folder: str = "") -> list[RemoteItem]:
        """List the direct children of a folder ("" or "/" for the root)."""
        ...

    def upload_file(
        self,
        local_path: Path,
        remote_path: str,
        on_progress: UploadProgress | None = None,
    ) -> RemoteItem:
        """Upload a local file, replacing any existing object at remote_path."""
        ...

    def download_file(self, remote_id: str, local_path: Path) -> None:
        """Download an object by id into local_path."""
        ...

    def create_folder(self, path: str) -> RemoteItem:
        """Create a folder; an already existing folder counts as success."""
        ...

    def get_quota(self) -> StorageQuota:
        """Return storage usage."""
        ...

    def delete_file(self, item: RemoteItem) -> None:
        """Delete a remote object."""
        ...
