"""Core module - Shared models, errors, crypto and chunking."""

from notesync.core.chunking import (
    SESSION_WINDOW_SIZE,
    SLICE_SIZE,
    Chunk,
    iter_windows,
    read_slice,
    slice_hashes,
)
from notesync.core.config import (
    ConfigError,
    OAuthConfig,
    SyncSettings,
    baidupan_oauth_config,
    load_oauth_config,
    onedrive_oauth_config,
)
from notesync.core.crypto import (
    decrypt_blob,
    encrypt_blob,
    generate_key,
    md5_hex,
    sha256_hex,
)
from notesync.core.errors import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    DownloadError,
    NoteSyncError,
    NotAuthenticatedError,
    NotFoundError,
    QuotaExceededError,
    SyncError,
    TokenRefreshError,
    TransportError,
    UploadError,
    ValidationError,
)
from notesync.core.models import (
    CloudNoteSnapshot,
    Note,
    Page,
    PageSyncState,
    SyncConfig,
    SyncMetadata,
    TokenData,
    UserInfo,
    content_hash,
    note_fingerprint,
    now_ms,
    parse_note,
    serialize_note,
)
from notesync.core.types import PageStatus, Provider, RunState, SyncOperation, SyncStatus

__all__ = [
    # Chunking
    "Chunk",
    "SESSION_WINDOW_SIZE",
    "SLICE_SIZE",
    "iter_windows",
    "read_slice",
    "slice_hashes",
    # Config
    "ConfigError",
    "OAuthConfig",
    "SyncSettings",
    "baidupan_oauth_config",
    "load_oauth_config",
    "onedrive_oauth_config",
    # Crypto
    "decrypt_blob",
    "encrypt_blob",
    "generate_key",
    "md5_hex",
    "sha256_hex",
    # Errors
    "APIError",
    "AuthenticationError",
    "AuthorizationError",
    "DownloadError",
    "NoteSyncError",
    "NotAuthenticatedError",
    "NotFoundError",
    "QuotaExceededError",
    "SyncError",
    "TokenRefreshError",
    "TransportError",
    "UploadError",
    "ValidationError",
    # Models
    "CloudNoteSnapshot",
    "Note",
    "Page",
    "PageSyncState",
    "SyncConfig",
    "SyncMetadata",
    "TokenData",
    "UserInfo",
    "content_hash",
    "note_fingerprint",
    "now_ms",
    "parse_note",
    "serialize_note",
    # Types
    "PageStatus",
    "Provider",
    "RunState",
    "SyncOperation",
    "SyncStatus",
]
