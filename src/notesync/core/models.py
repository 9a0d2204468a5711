"""Note data model and its JSON wire format.

Notes are stored locally and remotely as camelCase JSON documents
(``createdAt``, ``syncMetadata``, ...). The dataclasses here use
snake_case attributes and convert at the ``from_dict``/``to_dict``
boundary. Keys this module does not know about are carried through
unchanged, so a note written by a newer client survives a round trip.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any

from notesync.core.crypto import sha256_hex
from notesync.core.errors import ValidationError
from notesync.core.types import PageStatus, SyncStatus


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def content_hash(text: str) -> str:
    """Compute the SHA-256 hex digest of a text blob."""
    return sha256_hex(text.encode("utf-8"))


def _require_timestamp(data: dict[str, Any], key: str, where: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{where}: '{key}' must be a positive integer timestamp")
    return value


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Expected a numeric timestamp, got {value!r}")
    return int(value)


def _string_list(value: Any, where: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{where}: 'tags' must be a list of strings")
    return list(value)


@dataclass
class PageSyncState:
    """Page-level sync bookkeeping."""

    status: PageStatus = PageStatus.NOT_SYNCED
    last_sync_at: int | None = None
    cloud_updated_at: int | None = None
    content_hash: str | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PageSyncState:
        try:
            status = PageStatus(data.get("status", PageStatus.NOT_SYNCED.value))
        except ValueError as e:
            raise ValidationError(f"Invalid page sync status: {data.get('status')!r}") from e
        return cls(
            status=status,
            last_sync_at=_optional_int(data.get("lastSyncAt")),
            cloud_updated_at=_optional_int(data.get("cloudUpdatedAt")),
            content_hash=data.get("contentHash"),
            error=data.get("error"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.last_sync_at is not None:
            result["lastSyncAt"] = self.last_sync_at
        if self.cloud_updated_at is not None:
            result["cloudUpdatedAt"] = self.cloud_updated_at
        if self.content_hash is not None:
            result["contentHash"] = self.content_hash
        if self.error is not None:
            result["error"] = self.error
        return result


_PAGE_KEYS = {"id", "title", "content", "tags", "bookmarks", "createdAt", "updatedAt", "syncStatus"}


@dataclass
class Page:
    """An independently synchronizable unit of note content."""

    id: str
    title: str = ""
    content: str = ""
    tags: list[str] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0
    bookmarks: list[Any] | None = None
    sync_status: PageSyncState | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Page:
        """Create from a page JSON object."""
        if not isinstance(data, dict):
            raise ValidationError("Page must be a JSON object")
        page_id = data.get("id")
        if not isinstance(page_id, str) or not page_id:
            raise ValidationError("Page is missing a valid 'id'")
        content = data.get("content", "")
        if not isinstance(content, str):
            raise ValidationError(f"Page {page_id}: 'content' must be a string")
        bookmarks = data.get("bookmarks")
        if bookmarks is not None and not isinstance(bookmarks, list):
            raise ValidationError(f"Page {page_id}: 'bookmarks' must be a list")
        sync_status = data.get("syncStatus")
        return cls(
            id=page_id,
            title=str(data.get("title", "")),
            content=content,
            tags=_string_list(data.get("tags"), f"Page {page_id}"),
            created_at=_optional_int(data.get("createdAt")) or 0,
            updated_at=_optional_int(data.get("updatedAt")) or 0,
            bookmarks=bookmarks,
            sync_status=PageSyncState.from_dict(sync_status) if sync_status else None,
            extra={k: v for k, v in data.items() if k not in _PAGE_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.extra)
        result.update(
            {
                "id": self.id,
                "title": self.title,
                "content": self.content,
                "tags": list(self.tags),
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        if self.bookmarks is not None:
            result["bookmarks"] = self.bookmarks
        if self.sync_status is not None:
            result["syncStatus"] = self.sync_status.to_dict()
        return result

    def body_hash(self) -> str:
        """Hash of the user-visible page body, ignoring sync bookkeeping."""
        body = {
            "title": self.title,
            "content": self.content,
            "tags": self.tags,
            "bookmarks": self.bookmarks or [],
        }
        return content_hash(json.dumps(body, sort_keys=True, ensure_ascii=False))


@dataclass
class SyncConfig:
    """Per-note page sync configuration."""

    enabled: bool = False
    auto_commit: bool = False
    remote_path: str = ""
    last_sync_at: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        return cls(
            enabled=bool(data.get("enabled", False)),
            auto_commit=bool(data.get("autoCommit", False)),
            remote_path=str(data.get("remotePath") or data.get("oneDrivePath") or ""),
            last_sync_at=_optional_int(data.get("lastSyncAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "enabled": self.enabled,
            "autoCommit": self.auto_commit,
            "remotePath": self.remote_path,
        }
        if self.last_sync_at is not None:
            result["lastSyncAt"] = self.last_sync_at
        return result


@dataclass
class SyncMetadata:
    """Note-level link to its remote object."""

    cloud_id: str
    last_sync_at: int
    sync_status: SyncStatus = SyncStatus.SYNCED

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncMetadata:
        if not isinstance(data, dict):
            raise ValidationError("'syncMetadata' must be an object")
        cloud_id = data.get("cloudId")
        if not isinstance(cloud_id, str) or not cloud_id:
            raise ValidationError("syncMetadata: 'cloudId' is required")
        last_sync_at = data.get("lastSyncAt")
        if isinstance(last_sync_at, bool) or not isinstance(last_sync_at, int):
            raise ValidationError("syncMetadata: 'lastSyncAt' must be an integer")
        try:
            status = SyncStatus(data.get("syncStatus"))
        except ValueError as e:
            raise ValidationError(
                f"syncMetadata: invalid 'syncStatus' {data.get('syncStatus')!r}"
            ) from e
        return cls(cloud_id=cloud_id, last_sync_at=last_sync_at, sync_status=status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cloudId": self.cloud_id,
            "lastSyncAt": self.last_sync_at,
            "syncStatus": self.sync_status.value,
        }


_NOTE_KEYS = {
    "id",
    "title",
    "content",
    "pages",
    "createdAt",
    "updatedAt",
    "tags",
    "syncConfig",
    "syncMetadata",
}


@dataclass
class Note:
    """A user document made of one or more pages."""

    id: str
    title: str
    created_at: int
    updated_at: int
    content: str = ""
    pages: list[Page] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    sync_config: SyncConfig | None = None
    sync_metadata: SyncMetadata | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        """Create from a note JSON object.

        Raises:
            ValidationError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValidationError("Note must be a JSON object")
        note_id = data.get("id")
        if not isinstance(note_id, str) or not note_id:
            raise ValidationError("Note is missing a valid 'id'")
        where = f"Note {note_id}"
        title = data.get("title")
        if not isinstance(title, str):
            raise ValidationError(f"{where}: 'title' must be a string")
        content = data.get("content", "")
        if not isinstance(content, str):
            raise ValidationError(f"{where}: 'content' must be a string")
        created_at = _require_timestamp(data, "createdAt", where)
        updated_at = _require_timestamp(data, "updatedAt", where)
        if updated_at < created_at:
            raise ValidationError(f"{where}: 'updatedAt' precedes 'createdAt'")
        pages = data.get("pages", [])
        if not isinstance(pages, list):
            raise ValidationError(f"{where}: 'pages' must be a list")
        sync_config = data.get("syncConfig")
        sync_metadata = data.get("syncMetadata")
        return cls(
            id=note_id,
            title=title,
            created_at=created_at,
            updated_at=updated_at,
            content=content,
            pages=[Page.from_dict(p) for p in pages],
            tags=_string_list(data.get("tags"), where),
            sync_config=SyncConfig.from_dict(sync_config) if sync_config else None,
            sync_metadata=SyncMetadata.from_dict(sync_metadata) if sync_metadata else None,
            extra={k: v for k, v in data.items() if k not in _NOTE_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = dict(self.extra)
        result.update(
            {
                "id": self.id,
                "title": self.title,
                "content": self.content,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
                "tags": list(self.tags),
                "pages": [p.to_dict() for p in self.pages],
            }
        )
        if self.sync_config is not None:
            result["syncConfig"] = self.sync_config.to_dict()
        if self.sync_metadata is not None:
            result["syncMetadata"] = self.sync_metadata.to_dict()
        return result

    def find_page(self, page_id: str) -> Page | None:
        """Return the page with the given id, if present."""
        for page in self.pages:
            if page.id == page_id:
                return page
        return None

    def touch(self, timestamp: int) -> None:
        """Advance updated_at without ever moving it backwards."""
        self.updated_at = max(self.updated_at, timestamp)


def serialize_note(note: Note) -> bytes:
    """Serialize a note to its UTF-8 JSON wire form (2-space indent)."""
    return json.dumps(note.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")


def parse_note(raw: bytes | str) -> Note:
    """Parse a serialized note.

    Raises:
        ValidationError: If the payload is not valid JSON or not a valid note.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Note is not valid JSON: {e}") from e
    return Note.from_dict(data)


def note_fingerprint(note: Note) -> str:
    """Hash of a note's user-visible content, ignoring timestamps and sync state."""
    body = {
        "title": note.title,
        "content": note.content,
        "tags": note.tags,
        "pages": [
            {
                "id": p.id,
                "title": p.title,
                "content": p.content,
                "tags": p.tags,
                "bookmarks": p.bookmarks or [],
            }
            for p in note.pages
        ],
    }
    return content_hash(json.dumps(body, sort_keys=True, ensure_ascii=False))


@dataclass
class CloudNoteSnapshot:
    """Remote-side view of a note, rebuilt on every listing."""

    id: str
    name: str
    updated_at: int
    size: int
    remote_id: str
    content: str | None = None


@dataclass
class TokenData:
    """OAuth token pair for one account."""

    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenData:
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            expires_at=int(data["expiresAt"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
        }


@dataclass
class UserInfo:
    """Profile of the remote account owner."""

    id: str
    display_name: str
    email: str | None = None
    avatar_url: str | None = None
    vip_type: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserInfo:
        return cls(
            id=str(data["id"]),
            display_name=data.get("displayName", ""),
            email=data.get("email"),
            avatar_url=data.get("avatarUrl"),
            vip_type=data.get("vipType"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.id, "displayName": self.display_name}
        if self.email is not None:
            result["email"] = self.email
        if self.avatar_url is not None:
            result["avatarUrl"] = self.avatar_url
        if self.vip_type is not None:
            result["vipType"] = self.vip_type
        return result
