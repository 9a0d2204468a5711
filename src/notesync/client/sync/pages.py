"""Page-level incremental sync.

Each page of a sync-enabled note is stored as its own remote object at
``<remote_path>/<note_id>/<page_id>.json``, so a single edited page can
be committed or restored without transferring the whole note.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path

from notesync.client.providers.base import ProviderClient, RemoteItem, join_remote_path
from notesync.client.store import NoteStore
from notesync.client.sync.engine import ITEM_ERRORS, TERMINAL_ERRORS, temp_transfer_file
from notesync.client.sync.types import CloudPage, CommitResult
from notesync.core.errors import NotFoundError, SyncError, ValidationError
from notesync.core.models import Note, Page, PageSyncState, now_ms
from notesync.core.types import PageStatus

logger = logging.getLogger(__name__)

PAGE_SUFFIX = ".json"
PAGE_INDEX_NAME = "metadata.json"


def determine_page_status(local: Page | None, cloud_updated_at: int) -> PageStatus:
    """Classify a remote page against its local counterpart."""
    if local is None:
        return PageStatus.NOT_SYNCED
    last_sync = (local.sync_status.last_sync_at if local.sync_status else None) or 0
    if cloud_updated_at > last_sync and cloud_updated_at > local.updated_at:
        return PageStatus.CLOUD_NEWER
    if local.updated_at > last_sync:
        return PageStatus.LOCAL_NEWER
    return PageStatus.SYNCED


def serialize_page(page: Page) -> bytes:
    """Page payload as stored remotely, without local sync bookkeeping."""
    data = page.to_dict()
    data.pop("syncStatus", None)
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


class PageSync:
    """Commits and restores individual pages of sync-enabled notes."""

    def __init__(
        self,
        store: NoteStore,
        provider: ProviderClient,
        clock: Callable[[], int] = now_ms,
        temp_dir: Path | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._clock = clock
        self._temp_dir = temp_dir

    def page_folder(self, note: Note) -> str:
        """Remote folder holding a note's page objects.

        Raises:
            SyncError: If page sync is not enabled for the note.
        """
        config = note.sync_config
        if config is None or not config.enabled:
            raise SyncError(f"Sync is not enabled for note {note.id}")
        if not config.remote_path:
            raise SyncError(f"Note {note.id} has no remote path")
        return join_remote_path(config.remote_path, note.id)

    def commit_page(self, note_id: str, page_id: str) -> CommitResult:
        """Upload one page unless it is unchanged since its last commit."""
        note = self._store.read_note(note_id)
        try:
            folder = self.page_folder(note)
        except SyncError as e:
            return CommitResult(success=False, error=str(e))
        page = note.find_page(page_id)
        if page is None:
            return CommitResult(success=False, error=f"Page {page_id} not found in note {note_id}")

        digest = page.body_hash()
        previous = page.sync_status
        if previous and previous.status is PageStatus.SYNCED and previous.content_hash == digest:
            logger.debug(f"Page {page_id} unchanged since last commit, skipping")
            return CommitResult(success=True, skipped=True)

        remote_path = join_remote_path(folder, f"{page_id}{PAGE_SUFFIX}")
        try:
            with temp_transfer_file(PAGE_SUFFIX, self._temp_dir) as tmp_path:
                tmp_path.write_bytes(serialize_page(page))
                remote = self._provider.upload_file(tmp_path, remote_path)
        except TERMINAL_ERRORS:
            raise
        except ITEM_ERRORS as e:
            logger.error(f"Commit of page {page_id} failed: {e}")
            page.sync_status = PageSyncState(
                status=PageStatus.ERROR,
                last_sync_at=previous.last_sync_at if previous else None,
                cloud_updated_at=previous.cloud_updated_at if previous else None,
                content_hash=previous.content_hash if previous else None,
                error=str(e),
            )
            self._store.write_note(note)
            return CommitResult(success=False, error=str(e))

        now = self._clock()
        synced_at = max(now, remote.modified_at)
        page.sync_status = PageSyncState(
            status=PageStatus.SYNCED,
            last_sync_at=synced_at,
            cloud_updated_at=remote.modified_at or now,
            content_hash=digest,
        )
        assert note.sync_config is not None
        note.sync_config.last_sync_at = synced_at
        note.touch(now)
        self._store.write_note(note)
        logger.info(f"Committed page {page_id} of note {note_id}")
        return CommitResult(success=True)

    def _list_page_items(self, note: Note) -> list[RemoteItem]:
        try:
            items = self._provider.list_files(self.page_folder(note))
        except NotFoundError:
            return []
        return [
            item
            for item in items
            if not item.is_folder
            and item.name.endswith(PAGE_SUFFIX)
            and item.name != PAGE_INDEX_NAME
        ]

    def get_cloud_pages(self, note_id: str) -> list[CloudPage]:
        """List remote pages of a note with their status."""
        note = self._store.read_note(note_id)
        pages = []
        for item in self._list_page_items(note):
            page_id = item.name[: -len(PAGE_SUFFIX)]
            pages.append(
                CloudPage(
                    page_id=page_id,
                    name=item.name,
                    updated_at=item.modified_at,
                    size=item.size,
                    remote_id=item.id,
                    status=determine_page_status(note.find_page(page_id), item.modified_at),
                )
            )
        return pages

    def use_cloud_version(self, note_id: str, page_id: str) -> Page:
        """Replace (or append) a local page with its remote version.

        The note is backed up before the write and restored if it fails.

        Raises:
            NotFoundError: If the page has no remote object.
            ValidationError: If the remote page is malformed.
        """
        note = self._store.read_note(note_id)
        name = f"{page_id}{PAGE_SUFFIX}"
        item = next((i for i in self._list_page_items(note) if i.name == name), None)
        if item is None:
            raise NotFoundError(f"Page {page_id} of note {note_id} not found in cloud")

        with temp_transfer_file(PAGE_SUFFIX, self._temp_dir) as tmp_path:
            self._provider.download_file(item.id, tmp_path)
            try:
                data = json.loads(tmp_path.read_bytes())
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ValidationError(f"Cloud page {page_id} is not valid JSON") from e
        page = Page.from_dict(data)
        if page.id != page_id:
            raise ValidationError(f"Cloud page {page_id} carries id {page.id}")

        now = self._clock()
        page.sync_status = PageSyncState(
            status=PageStatus.SYNCED,
            last_sync_at=max(now, item.modified_at),
            cloud_updated_at=item.modified_at,
            content_hash=page.body_hash(),
        )
        for index, existing in enumerate(note.pages):
            if existing.id == page_id:
                note.pages[index] = page
                break
        else:
            note.pages.append(page)
        note.touch(now)

        backup_path = self._store.create_backup(note_id)
        try:
            self._store.write_note(note)
        except ITEM_ERRORS:
            logger.error(f"Write of note {note_id} failed, restoring backup")
            self._store.restore_from_backup(note_id, backup_path)
            raise
        finally:
            self._store.delete_backup(backup_path)
        logger.info(f"Applied cloud version of page {page_id} to note {note_id}")
        return page
