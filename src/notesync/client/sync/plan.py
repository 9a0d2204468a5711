"""Sync plan generation.

Rules for a note id present on one or both sides:

    local only                         -> upload
    cloud only                         -> download
    local.updated_at > cloud           -> upload
    cloud.updated_at > local           -> download
    equal timestamps                   -> conflict detector; conflict or nothing

Cloud content is only fetched for ties, through ``load_content``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from notesync.client.sync.conflict import ConflictDetector
from notesync.client.sync.types import PlanAction, SyncErrorInfo, SyncPlan, SyncPlanItem
from notesync.core.errors import NoteSyncError
from notesync.core.models import CloudNoteSnapshot, Note
from notesync.core.types import SyncOperation

logger = logging.getLogger(__name__)

ContentLoader = Callable[[CloudNoteSnapshot], str]


def classify(
    local: Note | None,
    cloud: CloudNoteSnapshot | None,
    detector: ConflictDetector,
    load_content: ContentLoader,
) -> SyncPlanItem | None:
    """Decide the action for one note id; None means already consistent.

    Raises:
        NoteSyncError: If cloud content was needed and could not be loaded.
    """
    if local is None and cloud is None:
        raise ValueError("classify() needs at least one side")
    if cloud is None:
        assert local is not None
        return SyncPlanItem(local.id, PlanAction.UPLOAD, local=local)
    if local is None:
        return SyncPlanItem(cloud.id, PlanAction.DOWNLOAD, cloud=cloud)

    if local.updated_at > cloud.updated_at:
        return SyncPlanItem(local.id, PlanAction.UPLOAD, local=local, cloud=cloud)
    if cloud.updated_at > local.updated_at:
        return SyncPlanItem(local.id, PlanAction.DOWNLOAD, local=local, cloud=cloud)

    if cloud.content is None:
        cloud.content = load_content(cloud)
    conflict = detector.detect(local, cloud)
    if conflict is None:
        return None
    return SyncPlanItem(local.id, PlanAction.CONFLICT, local=local, cloud=cloud, conflict=conflict)


def build_sync_plan(
    local_notes: Iterable[Note],
    cloud_notes: Iterable[CloudNoteSnapshot],
    detector: ConflictDetector,
    load_content: ContentLoader,
) -> SyncPlan:
    """Build the plan for a full sync.

    Every id from either side ends up in exactly one of upload, download,
    conflicts, unchanged, or errors (cloud content for a tie failed to load).
    """
    local_by_id = {note.id: note for note in local_notes}
    cloud_by_id = {snap.id: snap for snap in cloud_notes}
    plan = SyncPlan()

    for note_id in sorted(local_by_id.keys() | cloud_by_id.keys()):
        local = local_by_id.get(note_id)
        cloud = cloud_by_id.get(note_id)
        try:
            item = classify(local, cloud, detector, load_content)
        except NoteSyncError as e:
            name = local.title if local else note_id
            logger.warning(f"Could not compare note {note_id}: {e}")
            plan.errors.append(SyncErrorInfo(note_id, name, str(e), SyncOperation.CONFLICT))
            continue

        if item is None:
            plan.unchanged.append(note_id)
        elif item.action is PlanAction.UPLOAD:
            plan.upload.append(item)
        elif item.action is PlanAction.DOWNLOAD:
            plan.download.append(item)
        else:
            plan.conflicts.append(item)

    logger.info(
        f"Sync plan: {len(plan.upload)} upload, {len(plan.download)} download, "
        f"{len(plan.conflicts)} conflict, {len(plan.unchanged)} unchanged"
    )
    return plan
