"""Shared fixtures for notesync tests."""

from __future__ import annotations

import posixpath
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from keyring.errors import KeyringError

from notesync.client.providers.base import RemoteItem, StorageQuota, UploadProgress
from notesync.client.store import FileNoteStore
from notesync.core.errors import NotFoundError
from notesync.core.models import Note, Page, SyncConfig
from notesync.core.types import Provider

BASE_TIME = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now: int = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeProvider:
    """In-memory ProviderClient keyed by remote path.

    Replacing an object keeps its id, as OneDrive keeps the driveItem id
    on a "replace" upload. Each write stamps the object with the current
    fake clock time, like a server setting lastModifiedDateTime.
    """

    provider = Provider.ONEDRIVE

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.objects: dict[str, dict[str, Any]] = {}
        self.folders: set[str] = set()
        self.uploads: list[str] = []
        self.downloads: list[str] = []
        self.fail_uploads: dict[str, Exception] = {}
        self.size_override: int | None = None
        self._next_id = 1

    def put(self, remote_path: str, data: bytes, modified_at: int | None = None) -> RemoteItem:
        """Place an object directly, as another device would."""
        remote_path = remote_path.strip("/")
        existing = self.objects.get(remote_path)
        if existing is not None:
            item_id = existing["id"]
        else:
            item_id = f"item-{self._next_id}"
            self._next_id += 1
        self.objects[remote_path] = {
            "id": item_id,
            "data": data,
            "modified_at": modified_at if modified_at is not None else self.clock(),
        }
        return self._item(remote_path)

    def _item(self, remote_path: str) -> RemoteItem:
        obj = self.objects[remote_path]
        return RemoteItem(
            id=obj["id"],
            name=posixpath.basename(remote_path),
            size=len(obj["data"]),
            modified_at=obj["modified_at"],
            path=remote_path,
        )

    def list_files(self, folder: str = "") -> list[RemoteItem]:
        folder = folder.strip("/")
        if folder and folder not in self.folders:
            raise NotFoundError(f"Folder not found: {folder}")
        return [
            self._item(path)
            for path in sorted(self.objects)
            if posixpath.dirname(path) == folder
        ]

    def upload_file(
        self,
        local_path: Path,
        remote_path: str,
        on_progress: UploadProgress | None = None,
    ) -> RemoteItem:
        remote_path = remote_path.strip("/")
        if remote_path in self.fail_uploads:
            raise self.fail_uploads[remote_path]
        self.folders.add(posixpath.dirname(remote_path))
        item = self.put(remote_path, Path(local_path).read_bytes())
        self.uploads.append(remote_path)
        if on_progress:
            on_progress(item.size, item.size)
        if self.size_override is not None:
            item.size = self.size_override
        return item

    def download_file(self, remote_id: str, local_path: Path) -> None:
        for path, obj in self.objects.items():
            if obj["id"] == remote_id:
                self.downloads.append(path)
                Path(local_path).write_bytes(obj["data"])
                return
        raise NotFoundError(f"No object with id {remote_id}")

    def create_folder(self, path: str) -> RemoteItem:
        path = path.strip("/")
        self.folders.add(path)
        return RemoteItem(id=f"folder-{path}", name=posixpath.basename(path), is_folder=True, path=path)

    def get_quota(self) -> StorageQuota:
        used = sum(len(o["data"]) for o in self.objects.values())
        return StorageQuota(total=1_000_000, used=used, remaining=1_000_000 - used)

    def delete_file(self, item: RemoteItem) -> None:
        self.objects.pop((item.path or item.name).strip("/"), None)


def make_note(
    note_id: str = "n1",
    title: str = "Note",
    content: str = "hello",
    created_at: int = BASE_TIME - 10_000,
    updated_at: int = BASE_TIME,
    pages: list[Page] | None = None,
    sync_config: SyncConfig | None = None,
) -> Note:
    """Build a valid note."""
    return Note(
        id=note_id,
        title=title,
        created_at=created_at,
        updated_at=updated_at,
        content=content,
        pages=pages or [],
        sync_config=sync_config,
    )


@pytest.fixture(autouse=True)
def no_os_keyring() -> Iterator[MagicMock]:
    """Keep tests away from the real OS keyring; keys fall back to keyfiles."""
    with patch("notesync.client.keystore.keyring") as mock_keyring:
        mock_keyring.get_password.side_effect = KeyringError("no backend")
        mock_keyring.set_password.side_effect = KeyringError("no backend")
        yield mock_keyring


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at BASE_TIME."""
    return FakeClock()


@pytest.fixture
def provider(clock: FakeClock) -> FakeProvider:
    """Empty in-memory provider."""
    return FakeProvider(clock)


@pytest.fixture
def store(tmp_path: Path) -> FileNoteStore:
    """Note store in a temporary directory."""
    return FileNoteStore(tmp_path / "notes")
