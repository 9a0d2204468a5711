"""Sync engine coordinating note synchronization.

This module provides:
- SyncEngine: plans and executes note transfers between a NoteStore and
  one remote sync folder, detects conflicts and runs first-time syncs
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

from notesync.client.providers.base import ProviderClient, join_remote_path
from notesync.client.store import NOTE_SUFFIX, NoteStore
from notesync.client.sync.conflict import ConflictDetector, ConflictResolver
from notesync.client.sync.plan import build_sync_plan, classify
from notesync.client.sync.types import (
    CloudNote,
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
    SyncProgress,
    SyncResult,
    UploadResult,
)
from notesync.core.config import SyncSettings
from notesync.core.errors import (
    AuthenticationError,
    DownloadError,
    NotAuthenticatedError,
    NoteSyncError,
    NotFoundError,
    SyncError,
    TokenRefreshError,
    UploadError,
)
from notesync.core.models import (
    CloudNoteSnapshot,
    SyncMetadata,
    now_ms,
    parse_note,
    serialize_note,
)
from notesync.core.types import RunState, SyncOperation, SyncStatus

logger = logging.getLogger(__name__)

# Failures that end a whole run instead of a single item
TERMINAL_ERRORS: tuple[type[Exception], ...] = (
    AuthenticationError,
    NotAuthenticatedError,
    TokenRefreshError,
)
# Failures isolated to one note
ITEM_ERRORS: tuple[type[Exception], ...] = (NoteSyncError, OSError)


@contextlib.contextmanager
def temp_transfer_file(suffix: str, directory: Path | None = None) -> Iterator[Path]:
    """Yield a fresh temp file path that is removed on exit, even on failure."""
    fd, name = tempfile.mkstemp(prefix="notesync_", suffix=suffix, dir=directory)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        with contextlib.suppress(OSError):
            path.unlink()


class SyncEngine:
    """Coordinates note synchronization between local store and remote folder."""

    def __init__(
        self,
        store: NoteStore,
        provider: ProviderClient,
        settings: SyncSettings,
        *,
        detector: ConflictDetector | None = None,
        resolver: ConflictResolver | None = None,
        clock: Callable[[], int] = now_ms,
        temp_dir: Path | None = None,
        is_metered: Callable[[], bool] | None = None,
        progress_callback: ProgressCallback | None = None,
        conflict_callback: ConflictCallback | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            store: Local note storage.
            provider: Remote storage client for the account.
            settings: Sync folder and per-account flags.
            detector: Conflict detector (default ConflictDetector()).
            resolver: Conflict resolver (default writes through ``store``).
            clock: Returns the current time in epoch milliseconds.
            temp_dir: Directory for transfer temp files (default system temp).
            is_metered: Returns True on a metered connection; checked when
                ``settings.wifi_only`` is set.
            progress_callback: Optional callback after each transferred item.
            conflict_callback: Optional callback when conflicts are detected.
        """
        self._store = store
        self._provider = provider
        self.settings = settings
        self._detector = detector or ConflictDetector()
        self._resolver = resolver or ConflictResolver(store, clock)
        self._clock = clock
        self._temp_dir = Path(temp_dir) if temp_dir else None
        self._is_metered = is_metered
        self._progress_callback = progress_callback
        self._conflict_callback = conflict_callback
        self._cancel_event = threading.Event()
        self._run_lock = threading.Lock()
        self._state = RunState.IDLE
        self._statuses: dict[str, SyncStatus] = {}
        self._conflicts: list[ConflictInfo] = []

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def conflicts(self) -> list[ConflictInfo]:
        """Conflicts detected by the most recent full sync."""
        return list(self._conflicts)

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop a running sync before its next item; completed items stay."""
        if self._state is RunState.RUNNING:
            logger.info("Sync cancellation requested")
        self._cancel_event.set()

    def get_sync_status(self, note_id: str) -> SyncStatus:
        """Status of a note in this session, falling back to its metadata."""
        if note_id in self._statuses:
            return self._statuses[note_id]
        with contextlib.suppress(NotFoundError):
            note = self._store.read_note(note_id)
            if note.sync_metadata is not None:
                return note.sync_metadata.sync_status
        return SyncStatus.NOT_SYNCED

    # ------------------------------------------------------------------
    # Remote listing
    # ------------------------------------------------------------------

    def _require_folder(self) -> str:
        if not self.settings.sync_folder:
            raise SyncError("No sync folder configured")
        return self.settings.sync_folder

    def remote_note_path(self, note_id: str) -> str:
        """Remote path of a note object."""
        return join_remote_path(self._require_folder(), f"{note_id}{NOTE_SUFFIX}")

    def ensure_sync_folder(self) -> None:
        """Create the sync folder if it does not exist yet."""
        folder = self._require_folder()
        if folder.strip("/"):
            self._provider.create_folder(folder)

    def get_cloud_note_snapshots(self) -> list[CloudNoteSnapshot]:
        """List ``.note`` objects in the sync folder; a missing folder is empty."""
        folder = self._require_folder()
        try:
            items = self._provider.list_files(folder)
        except NotFoundError:
            logger.info(f"Sync folder {folder} does not exist yet")
            return []
        return [
            CloudNoteSnapshot(
                id=item.name[: -len(NOTE_SUFFIX)],
                name=item.name,
                updated_at=item.modified_at,
                size=item.size,
                remote_id=item.id,
            )
            for item in items
            if not item.is_folder and item.name.endswith(NOTE_SUFFIX)
        ]

    def get_cloud_notes(self) -> list[CloudNote]:
        """Remote notes with a flag telling whether each exists locally."""
        return [
            CloudNote(
                id=snap.id,
                name=snap.name,
                updated_at=snap.updated_at,
                size=snap.size,
                remote_id=snap.remote_id,
                exists_locally=self._store.note_exists(snap.id),
            )
            for snap in self.get_cloud_note_snapshots()
        ]

    def load_cloud_content(self, snapshot: CloudNoteSnapshot) -> str:
        """Download a remote note and return its text."""
        with temp_transfer_file(NOTE_SUFFIX, self._temp_dir) as tmp_path:
            self._provider.download_file(snapshot.remote_id, tmp_path)
            return tmp_path.read_bytes().decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    def _check_network(self) -> None:
        if self.settings.wifi_only and self._is_metered is not None and self._is_metered():
            raise SyncError("Sync is limited to Wi-Fi and the connection is metered")

    def build_plan(self) -> SyncPlan:
        """Compare local notes with the sync folder."""
        return build_sync_plan(
            self._store.get_all_notes(),
            self.get_cloud_note_snapshots(),
            self._detector,
            self.load_cloud_content,
        )

    def sync(self) -> SyncResult:
        """Perform a full sync: uploads, then downloads, then conflict report.

        Returns:
            SyncResult with counts, detected conflicts and per-note errors.

        Raises:
            SyncError: If no folder is configured, the connection is
                metered under wifi-only, or a sync is already running.
            AuthenticationError: If the account must sign in again.
        """
        self._require_folder()
        self._check_network()
        if not self._run_lock.acquire(blocking=False):
            raise SyncError("A sync is already running")

        self._cancel_event.clear()
        self._state = RunState.RUNNING
        self._conflicts = []
        result = SyncResult(state=RunState.RUNNING, timestamp=self._clock())
        logger.info(f"Starting sync with {self._provider.provider.value}:{self.settings.sync_folder}")
        try:
            self.ensure_sync_folder()
            plan = self.build_plan()
            result.errors.extend(plan.errors)
            self._execute(plan, result)
        finally:
            self._state = RunState.CANCELLED if self.is_cancelled else RunState.COMPLETED
            result.state = self._state
            self._run_lock.release()

        logger.info(
            f"Sync {result.state.value}: {result.uploaded} uploaded, "
            f"{result.downloaded} downloaded, {len(result.conflicts)} conflicts, "
            f"{len(result.errors)} errors"
        )
        return result

    def _execute(self, plan: SyncPlan, result: SyncResult) -> None:
        total = plan.total
        current = 0

        for item in plan.upload:
            if self.is_cancelled:
                logger.info("Sync cancelled before remaining uploads")
                return
            current += 1
            if self._run_item(item.note_id, item.note_name, SyncOperation.UPLOAD, result):
                result.uploaded += 1
            self._report_progress(current, total, SyncOperation.UPLOAD, item.note_id, item.note_name)

        for item in plan.download:
            if self.is_cancelled:
                logger.info("Sync cancelled before remaining downloads")
                return
            current += 1
            assert item.cloud is not None
            if self._run_item(
                item.note_id, item.note_name, SyncOperation.DOWNLOAD, result, item.cloud.remote_id
            ):
                result.downloaded += 1
            self._report_progress(current, total, SyncOperation.DOWNLOAD, item.note_id, item.note_name)

        for item in plan.conflicts:
            assert item.conflict is not None
            self._statuses[item.note_id] = SyncStatus.CONFLICT
            self._conflicts.append(item.conflict)
            result.conflicts.append(item.conflict)
            if self._conflict_callback:
                self._conflict_callback(item.conflict)

    def _run_item(
        self,
        note_id: str,
        note_name: str,
        operation: SyncOperation,
        result: SyncResult,
        remote_id: str | None = None,
    ) -> bool:
        self._statuses[note_id] = SyncStatus.SYNCING
        try:
            if operation is SyncOperation.UPLOAD:
                self.upload_note(note_id)
            else:
                assert remote_id is not None
                self.download_note(remote_id, note_id)
        except TERMINAL_ERRORS:
            self._statuses[note_id] = SyncStatus.ERROR
            raise
        except ITEM_ERRORS as e:
            logger.error(f"Failed to {operation.value} note {note_id}: {e}")
            self._statuses[note_id] = SyncStatus.ERROR
            result.errors.append(SyncErrorInfo(note_id, note_name, str(e), operation))
            return False
        self._statuses[note_id] = SyncStatus.SYNCED
        return True

    def _report_progress(
        self, current: int, total: int, operation: SyncOperation, note_id: str, note_name: str
    ) -> None:
        if self._progress_callback:
            self._progress_callback(SyncProgress(current, total, operation, note_id, note_name))

    # ------------------------------------------------------------------
    # Single note operations
    # ------------------------------------------------------------------

    def sync_note(self, note_id: str) -> NoteSyncResult:
        """Sync one note with the same rules as a full sync, without a plan."""
        try:
            local = self._store.read_note(note_id) if self._store.note_exists(note_id) else None
            cloud = next((s for s in self.get_cloud_note_snapshots() if s.id == note_id), None)
            if local is None and cloud is None:
                return NoteSyncResult(NoteSyncStatus.ERROR, f"Note {note_id} not found locally or in cloud")

            item = classify(local, cloud, self._detector, self.load_cloud_content)
            if item is None:
                self._statuses[note_id] = SyncStatus.SYNCED
                return NoteSyncResult(NoteSyncStatus.SUCCESS, "Already up to date")
            if item.action is PlanAction.UPLOAD:
                self.upload_note(note_id)
                self._statuses[note_id] = SyncStatus.SYNCED
                return NoteSyncResult(NoteSyncStatus.SUCCESS, "Uploaded local version")
            if item.action is PlanAction.DOWNLOAD:
                assert item.cloud is not None
                self.download_note(item.cloud.remote_id, note_id)
                self._statuses[note_id] = SyncStatus.SYNCED
                return NoteSyncResult(NoteSyncStatus.SUCCESS, "Downloaded cloud version")

            assert item.conflict is not None
            self._statuses[note_id] = SyncStatus.CONFLICT
            if self._conflict_callback:
                self._conflict_callback(item.conflict)
            return NoteSyncResult(NoteSyncStatus.CONFLICT, "Local and cloud versions differ", item.conflict)
        except TERMINAL_ERRORS:
            raise
        except ITEM_ERRORS as e:
            logger.error(f"Failed to sync note {note_id}: {e}")
            self._statuses[note_id] = SyncStatus.ERROR
            return NoteSyncResult(NoteSyncStatus.ERROR, str(e))

    def upload_note(self, note_id: str) -> UploadResult:
        """Upload one note and record the remote link in its metadata.

        Raises:
            UploadError: If the remote size differs from the serialized size;
                sync metadata is left unchanged in that case.
        """
        note = self._store.read_note(note_id)
        payload = serialize_note(note)
        remote_path = self.remote_note_path(note.id)

        with temp_transfer_file(NOTE_SUFFIX, self._temp_dir) as tmp_path:
            tmp_path.write_bytes(payload)
            remote = self._provider.upload_file(tmp_path, remote_path)

        if remote.size != len(payload):
            raise UploadError(
                f"Size mismatch for {remote_path}: uploaded {len(payload)} bytes, "
                f"remote reports {remote.size}"
            )

        note.sync_metadata = SyncMetadata(
            cloud_id=remote.id,
            last_sync_at=max(self._clock(), remote.modified_at),
            sync_status=SyncStatus.SYNCED,
        )
        self._store.write_note(note)
        logger.info(f"Uploaded note {note.id} ({len(payload)} bytes)")
        return UploadResult(note_id=note.id, remote_id=remote.id, size=len(payload))

    def download_note(self, remote_id: str, note_id: str | None = None) -> DownloadResult:
        """Download one note, replacing the local copy safely.

        The download is validated before the live note is touched. An
        existing note is backed up first and restored if the write fails.

        Args:
            remote_id: Provider object id.
            note_id: Expected note id (the remote file name); overrides the
                id inside the payload when they disagree.

        Raises:
            DownloadError: Invalid payload or failed local write.
        """
        with temp_transfer_file(NOTE_SUFFIX, self._temp_dir) as tmp_path:
            self._provider.download_file(remote_id, tmp_path)
            if not self._store.validate_note_format(tmp_path):
                raise DownloadError(f"Downloaded object {remote_id} is not a valid note")
            raw = tmp_path.read_bytes()

        note = parse_note(raw)
        if note_id and note.id != note_id:
            logger.warning(f"Remote note {note_id} carries id {note.id}; using {note_id}")
            note.id = note_id

        backup_path = self._store.create_backup(note.id) if self._store.note_exists(note.id) else None
        note.sync_metadata = SyncMetadata(
            cloud_id=remote_id,
            last_sync_at=self._clock(),
            sync_status=SyncStatus.SYNCED,
        )
        try:
            self._store.write_note(note)
        except ITEM_ERRORS as e:
            if backup_path is not None:
                logger.error(f"Write of note {note.id} failed, restoring backup: {e}")
                try:
                    self._store.restore_from_backup(note.id, backup_path)
                finally:
                    self._store.delete_backup(backup_path)
            raise DownloadError(f"Failed to write note {note.id}: {e}") from e

        if backup_path is not None:
            self._store.delete_backup(backup_path)
        logger.info(f"Downloaded note {note.id} ({len(raw)} bytes)")
        return DownloadResult(note_id=note.id, size=len(raw), replaced_existing=backup_path is not None)

    def resolve_conflict(self, conflict: ConflictInfo, resolution: ConflictResolution) -> ResolutionOutcome:
        """Apply a conflict decision and bring the remote side in line.

        keep_local re-uploads the local version so both sides agree;
        use_cloud already matches the remote object.
        """
        outcome = self._resolver.resolve(conflict, resolution)
        if resolution.action is ConflictAction.KEEP_LOCAL:
            self.upload_note(conflict.note_id)
        self._statuses[conflict.note_id] = (
            SyncStatus.CONFLICT if resolution.action is ConflictAction.CREATE_BOTH else SyncStatus.SYNCED
        )
        self._conflicts = [c for c in self._conflicts if c.note_id != conflict.note_id]
        return outcome

    # ------------------------------------------------------------------
    # Initial sync
    # ------------------------------------------------------------------

    def needs_initial_sync(self) -> bool:
        """True on a first connection: nothing synced yet, and notes exist on either side."""
        if not self.settings.sync_folder:
            return False
        local_notes = self._store.get_all_notes()
        if any(note.sync_metadata is not None for note in local_notes):
            return False
        if local_notes:
            return True
        return bool(self.get_cloud_note_snapshots())

    def perform_initial_sync(self, strategy: InitialSyncStrategy) -> InitialSyncResult:
        """Reconcile local and remote on first connection.

        - upload_local: push every local note.
        - download_cloud: pull every remote note.
        - smart_merge: one-sided notes go to the other side; notes on both
          sides go to whichever is newer, local winning ties.
        """
        self._require_folder()
        self._check_network()
        self._cancel_event.clear()
        self.ensure_sync_folder()
        result = InitialSyncResult()
        local_by_id = {note.id: note for note in self._store.get_all_notes()}
        cloud_by_id = {snap.id: snap for snap in self.get_cloud_note_snapshots()}
        logger.info(
            f"Initial sync ({strategy.value}): {len(local_by_id)} local, {len(cloud_by_id)} cloud"
        )

        work: list[tuple[str, str, SyncOperation, str | None, bool]] = []
        if strategy is InitialSyncStrategy.UPLOAD_LOCAL:
            work = [(n.id, n.title, SyncOperation.UPLOAD, None, False) for n in local_by_id.values()]
        elif strategy is InitialSyncStrategy.DOWNLOAD_CLOUD:
            work = [
                (s.id, s.name, SyncOperation.DOWNLOAD, s.remote_id, False) for s in cloud_by_id.values()
            ]
        else:
            for note_id in sorted(local_by_id.keys() | cloud_by_id.keys()):
                local = local_by_id.get(note_id)
                cloud = cloud_by_id.get(note_id)
                both = local is not None and cloud is not None
                if cloud is None or (local is not None and local.updated_at >= cloud.updated_at):
                    assert local is not None
                    work.append((note_id, local.title, SyncOperation.UPLOAD, None, both))
                else:
                    name = local.title if local else cloud.name
                    work.append((note_id, name, SyncOperation.DOWNLOAD, cloud.remote_id, both))

        for current, (note_id, name, operation, remote_id, merged) in enumerate(work, start=1):
            if self.is_cancelled:
                break
            try:
                if operation is SyncOperation.UPLOAD:
                    self.upload_note(note_id)
                    result.uploaded += 1
                else:
                    assert remote_id is not None
                    self.download_note(remote_id, note_id)
                    result.downloaded += 1
                if merged:
                    result.merged += 1
                self._statuses[note_id] = SyncStatus.SYNCED
            except TERMINAL_ERRORS:
                raise
            except ITEM_ERRORS as e:
                logger.error(f"Initial sync failed for note {note_id}: {e}")
                self._statuses[note_id] = SyncStatus.ERROR
                result.errors.append(SyncErrorInfo(note_id, name, str(e), operation))
            self._report_progress(current, len(work), operation, note_id, name)

        return result
