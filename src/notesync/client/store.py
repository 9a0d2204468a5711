"""Local note storage.

This module provides:
- NoteStore: the storage interface the sync layer depends on
- FileNoteStore: one ``<id>.note`` JSON file per note in a directory,
  written atomically, with timestamped backup files
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Protocol

from notesync.core.errors import NotFoundError, ValidationError
from notesync.core.models import Note, parse_note, serialize_note

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".note"
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_note_id(note_id: str) -> str:
    """Make a note id safe for use as a filename."""
    return _UNSAFE_ID_CHARS.sub("_", note_id)


class NoteStore(Protocol):
    """Persistence for local notes."""

    def read_note(self, note_id: str) -> Note:
        """Read a note.

        Raises:
            NotFoundError: If the note does not exist.
            ValidationError: If the stored note is malformed.
        """
        ...

    def write_note(self, note: Note) -> None:
        """Write a note atomically."""
        ...

    def note_exists(self, note_id: str) -> bool: ...

    def get_all_notes(self) -> list[Note]:
        """Return every readable note; corrupt entries are logged and skipped."""
        ...

    def create_backup(self, note_id: str) -> Path: ...

    def restore_from_backup(self, note_id: str, backup_path: Path) -> None: ...

    def delete_backup(self, backup_path: Path) -> None: ...

    def validate_note_format(self, path: Path) -> bool: ...


class FileNoteStore:
    """NoteStore backed by a directory of ``<id>.note`` JSON files."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def note_path(self, note_id: str) -> Path:
        """Path of a note file."""
        return self.directory / f"{sanitize_note_id(note_id)}{NOTE_SUFFIX}"

    def note_exists(self, note_id: str) -> bool:
        return self.note_path(note_id).exists()

    def read_note(self, note_id: str) -> Note:
        path = self.note_path(note_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Note not found: {note_id}") from e
        return parse_note(raw)

    def write_note(self, note: Note) -> None:
        """Write to a temp file, verify it parses, then rename over the note."""
        path = self.note_path(note.id)
        tmp_path = path.with_name(path.name + ".tmp")
        payload = serialize_note(note)
        try:
            tmp_path.write_bytes(payload)
            parse_note(tmp_path.read_bytes())
            os.replace(tmp_path, path)
        except BaseException:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise
        logger.debug(f"Wrote note {note.id} ({len(payload)} bytes)")

    def get_all_notes(self) -> list[Note]:
        notes: list[Note] = []
        for path in sorted(self.directory.glob(f"*{NOTE_SUFFIX}")):
            try:
                notes.append(parse_note(path.read_bytes()))
            except (OSError, ValidationError) as e:
                logger.warning(f"Skipping unreadable note file {path.name}: {e}")
        return notes

    def create_backup(self, note_id: str) -> Path:
        """Copy a note file to ``<file>.backup.<ms>``.

        Raises:
            NotFoundError: If the note does not exist.
        """
        path = self.note_path(note_id)
        if not path.exists():
            raise NotFoundError(f"Cannot create backup: note not found: {note_id}")
        backup_path = path.with_name(f"{path.name}.backup.{int(time.time() * 1000)}")
        shutil.copyfile(path, backup_path)
        logger.info(f"Created backup of note {note_id}: {backup_path.name}")
        return backup_path

    def restore_from_backup(self, note_id: str, backup_path: Path) -> None:
        """Copy a validated backup back over the note file.

        Raises:
            NotFoundError: If the backup is missing.
            ValidationError: If the backup is not a valid note.
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise NotFoundError(f"Backup file not found: {backup_path}")
        if not self.validate_note_format(backup_path):
            raise ValidationError(f"Backup file is not a valid note: {backup_path}")
        shutil.copyfile(backup_path, self.note_path(note_id))
        logger.info(f"Restored note {note_id} from {backup_path.name}")

    def delete_backup(self, backup_path: Path) -> None:
        """Delete a backup file; a missing file is not an error."""
        try:
            Path(backup_path).unlink()
        except FileNotFoundError:
            logger.warning(f"Backup file does not exist, skipping deletion: {backup_path}")

    def validate_note_format(self, path: Path) -> bool:
        try:
            parse_note(Path(path).read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Invalid note format in {Path(path).name}: {e}")
            return False
        return True
