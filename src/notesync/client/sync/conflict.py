"""Conflict detection and resolution.

Only notes whose local and cloud ``updated_at`` are equal reach the
detector; unequal timestamps are settled by the plan (newer wins).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

from notesync.client.store import NoteStore
from notesync.client.sync.types import (
    ConflictAction,
    ConflictInfo,
    ConflictResolution,
    ResolutionOutcome,
)
from notesync.core.errors import ValidationError
from notesync.core.models import (
    CloudNoteSnapshot,
    Note,
    SyncMetadata,
    note_fingerprint,
    now_ms,
    parse_note,
)
from notesync.core.types import SyncStatus

logger = logging.getLogger(__name__)

LOCAL_VERSION = "local"
CLOUD_VERSION = "cloud"


def cloud_snapshot_to_note(snapshot: CloudNoteSnapshot, local: Note | None = None) -> Note:
    """Turn downloaded cloud content into a Note.

    A serialized note is unwrapped as-is (keeping the snapshot's id).
    Anything else becomes the body of a note that borrows title and
    creation time from the local version.
    """
    raw = snapshot.content or ""
    try:
        note = parse_note(raw)
        note.id = snapshot.id
        return note
    except ValidationError:
        pass
    created_at = local.created_at if local else snapshot.updated_at
    return Note(
        id=snapshot.id,
        title=local.title if local else snapshot.name,
        created_at=min(created_at, snapshot.updated_at),
        updated_at=snapshot.updated_at,
        content=raw,
        tags=list(local.tags) if local else [],
    )


def contents_differ(local: Note, cloud_text: str) -> bool:
    """Compare the local note with raw cloud content.

    A cloud payload that is a full serialized note is compared on
    user-visible content only. A JSON envelope with a ``content`` field is
    unwrapped one level. Anything else is compared verbatim.
    """
    try:
        return note_fingerprint(local) != note_fingerprint(parse_note(cloud_text))
    except ValidationError:
        pass
    try:
        envelope = json.loads(cloud_text)
    except json.JSONDecodeError:
        envelope = None
    if isinstance(envelope, dict) and isinstance(envelope.get("content"), str):
        return local.content != envelope["content"]
    return local.content != cloud_text


class ConflictDetector:
    """Detects same-timestamp content divergence."""

    def detect(self, local: Note, cloud: CloudNoteSnapshot) -> ConflictInfo | None:
        """Return ConflictInfo when timestamps tie and contents differ.

        Raises:
            ValueError: If a tie needs comparing but cloud content was not loaded.
        """
        if local.updated_at != cloud.updated_at:
            return None
        if cloud.content is None:
            raise ValueError(f"Cloud content for {cloud.id} must be loaded before detection")
        if not contents_differ(local, cloud.content):
            return None
        logger.info(f"Conflict detected for note {local.id} at {local.updated_at}")
        return ConflictInfo(
            note_id=local.id,
            note_name=local.title,
            local_version=local,
            cloud_version=cloud,
        )


class ConflictResolver:
    """Applies a user's conflict decision to the local store."""

    def __init__(self, store: NoteStore, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._clock = clock

    def resolve(self, conflict: ConflictInfo, resolution: ConflictResolution) -> ResolutionOutcome:
        """Resolve a conflict.

        - keep_local: local note untouched.
        - use_cloud: local note overwritten with the cloud version.
        - create_both: both versions saved as conflict copies, original untouched.

        With ``save_conflict_copy`` the losing side is saved as a copy
        first. create_both already keeps both sides, so no extra copy is made.
        """
        action = resolution.action
        outcome = ResolutionOutcome(note_id=conflict.note_id, action=action)

        if resolution.save_conflict_copy and action is not ConflictAction.CREATE_BOTH:
            loser = CLOUD_VERSION if action is ConflictAction.KEEP_LOCAL else LOCAL_VERSION
            outcome.copies.append(self.save_conflict_copy(conflict, loser))

        if action is ConflictAction.USE_CLOUD:
            note = cloud_snapshot_to_note(conflict.cloud_version, conflict.local_version)
            note.sync_metadata = SyncMetadata(
                cloud_id=conflict.cloud_version.remote_id,
                last_sync_at=self._clock(),
                sync_status=SyncStatus.SYNCED,
            )
            self._store.write_note(note)
            logger.info(f"Conflict on {conflict.note_id} resolved with cloud version")
        elif action is ConflictAction.CREATE_BOTH:
            outcome.copies.append(self.save_conflict_copy(conflict, LOCAL_VERSION))
            outcome.copies.append(self.save_conflict_copy(conflict, CLOUD_VERSION))
            logger.info(f"Conflict on {conflict.note_id} resolved by keeping both versions")
        else:
            logger.info(f"Conflict on {conflict.note_id} resolved with local version")
        return outcome

    def save_conflict_copy(self, conflict: ConflictInfo, version: str) -> str:
        """Persist one side of a conflict as a new note and return its id."""
        timestamp = self._clock()
        if version == LOCAL_VERSION:
            source = conflict.local_version
            label = "Local"
        else:
            source = cloud_snapshot_to_note(conflict.cloud_version, conflict.local_version)
            label = "Cloud"

        copy = Note.from_dict(source.to_dict())
        copy.id = f"{conflict.note_id}_conflict_{version}_{timestamp}"
        copy.title = f"{source.title} (Conflict - {label} Copy)"
        copy.created_at = timestamp
        copy.updated_at = timestamp
        copy.sync_metadata = None
        self._store.write_note(copy)
        logger.info(f"Saved {version} conflict copy {copy.id}")
        return copy.id
