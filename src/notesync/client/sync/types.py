"""Types for sync operations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from notesync.core.models import CloudNoteSnapshot, Note, now_ms
from notesync.core.types import PageStatus, RunState, SyncOperation


class PlanAction(str, Enum):
    """What a sync run does with one note id."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    CONFLICT = "conflict"


class ConflictAction(str, Enum):
    """How the user chose to resolve a conflict."""

    KEEP_LOCAL = "keep_local"
    USE_CLOUD = "use_cloud"
    CREATE_BOTH = "create_both"


class InitialSyncStrategy(str, Enum):
    """First-connection reconciliation strategy."""

    UPLOAD_LOCAL = "upload_local"
    DOWNLOAD_CLOUD = "download_cloud"
    SMART_MERGE = "smart_merge"


class NoteSyncStatus(str, Enum):
    """Outcome of a single-note sync."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class SyncProgress:
    """Progress information for a running sync."""

    current: int
    total: int
    operation: SyncOperation
    note_id: str
    note_name: str

    @property
    def percent(self) -> float:
        return (self.current / self.total * 100.0) if self.total else 100.0


@dataclass
class ConflictInfo:
    """Same-timestamp divergence between the local and the cloud version."""

    note_id: str
    note_name: str
    local_version: Note
    cloud_version: CloudNoteSnapshot

    @property
    def local_updated_at(self) -> int:
        return self.local_version.updated_at

    @property
    def cloud_updated_at(self) -> int:
        return self.cloud_version.updated_at


@dataclass
class ConflictResolution:
    """User decision for one conflict."""

    action: ConflictAction
    save_conflict_copy: bool = False


@dataclass
class ResolutionOutcome:
    """What resolving a conflict changed locally."""

    note_id: str
    action: ConflictAction
    copies: list[str] = field(default_factory=list)


@dataclass
class SyncPlanItem:
    """One planned action."""

    note_id: str
    action: PlanAction
    local: Note | None = None
    cloud: CloudNoteSnapshot | None = None
    conflict: ConflictInfo | None = None

    @property
    def note_name(self) -> str:
        if self.local is not None:
            return self.local.title
        if self.cloud is not None:
            return self.cloud.name
        return self.note_id


@dataclass
class SyncErrorInfo:
    """A failure isolated to one note."""

    note_id: str
    note_name: str
    error: str
    operation: SyncOperation


@dataclass
class SyncPlan:
    """Actions for one run; every note id lands in exactly one bucket."""

    upload: list[SyncPlanItem] = field(default_factory=list)
    download: list[SyncPlanItem] = field(default_factory=list)
    conflicts: list[SyncPlanItem] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[SyncErrorInfo] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Number of transfer items (uploads + downloads)."""
        return len(self.upload) + len(self.download)

    def note_ids(self) -> list[str]:
        ids = [i.note_id for i in (*self.upload, *self.download, *self.conflicts)]
        return ids + self.unchanged + [e.note_id for e in self.errors]


@dataclass
class SyncResult:
    """Summary of a full sync run."""

    uploaded: int = 0
    downloaded: int = 0
    conflicts: list[ConflictInfo] = field(default_factory=list)
    errors: list[SyncErrorInfo] = field(default_factory=list)
    state: RunState = RunState.IDLE
    timestamp: int = field(default_factory=now_ms)

    @property
    def success(self) -> bool:
        return not self.errors and self.state is RunState.COMPLETED


@dataclass
class NoteSyncResult:
    """Result of syncing a single note."""

    status: NoteSyncStatus
    message: str
    conflict: ConflictInfo | None = None


@dataclass
class UploadResult:
    """A note uploaded to the sync folder."""

    note_id: str
    remote_id: str
    size: int


@dataclass
class DownloadResult:
    """A note downloaded from the sync folder."""

    note_id: str
    size: int
    replaced_existing: bool


@dataclass
class CloudNote:
    """A remote note as shown to the user."""

    id: str
    name: str
    updated_at: int
    size: int
    remote_id: str
    exists_locally: bool


@dataclass
class InitialSyncResult:
    """Summary of a first-connection sync."""

    uploaded: int = 0
    downloaded: int = 0
    merged: int = 0
    errors: list[SyncErrorInfo] = field(default_factory=list)


@dataclass
class CommitResult:
    """Result of committing one page."""

    success: bool
    skipped: bool = False
    error: str | None = None


@dataclass
class CloudPage:
    """A remote page object and its status relative to the local page."""

    page_id: str
    name: str
    updated_at: int
    size: int
    remote_id: str
    status: PageStatus


ProgressCallback = Callable[[SyncProgress], None]
ConflictCallback = Callable[[ConflictInfo], None]
