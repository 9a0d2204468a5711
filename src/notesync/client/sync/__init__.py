"""Note synchronization.

Architecture:
    SyncEngine -> build_sync_plan -> ProviderClient / NoteStore

Components:
- **build_sync_plan**: newer-wins plan, ties go to the ConflictDetector
- **ConflictDetector / ConflictResolver**: same-timestamp divergence
- **SyncEngine**: full sync, single-note sync, upload/download, initial sync
- **PageSync**: per-page commit, listing and restore
"""

from notesync.client.sync.conflict import (
    ConflictDetector,
    ConflictResolver,
    cloud_snapshot_to_note,
    contents_differ,
)
from notesync.client.sync.engine import SyncEngine, temp_transfer_file
from notesync.client.sync.pages import PageSync, determine_page_status
from notesync.client.sync.plan import build_sync_plan, classify
from notesync.client.sync.types import (
    CloudNote,
    CloudPage,
    CommitResult,
    ConflictAction,
    ConflictCallback,
    ConflictInfo,
    ConflictResolution,
    DownloadResult,
    InitialSyncResult,
    InitialSyncStrategy,
    NoteSyncResult,
    NoteSyncStatus,
    PlanAction,
    ProgressCallback,
    ResolutionOutcome,
    SyncErrorInfo,
    SyncPlan,
    SyncPlanItem,
    SyncProgress,
    SyncResult,
    UploadResult,
)

__all__ = [
    # Types
    "CloudNote",
    "CloudPage",
    "CommitResult",
    "ConflictAction",
    "ConflictCallback",
    "ConflictInfo",
    "ConflictResolution",
    "DownloadResult",
    "InitialSyncResult",
    "InitialSyncStrategy",
    "NoteSyncResult",
    "NoteSyncStatus",
    "PlanAction",
    "ProgressCallback",
    "ResolutionOutcome",
    "SyncErrorInfo",
    "SyncPlan",
    "SyncPlanItem",
    "SyncProgress",
    "SyncResult",
    "UploadResult",
    # Planning and conflicts
    "ConflictDetector",
    "ConflictResolver",
    "build_sync_plan",
    "classify",
    "cloud_snapshot_to_note",
    "contents_differ",
    # Execution
    "PageSync",
    "SyncEngine",
    "determine_page_status",
    "temp_transfer_file",
]
