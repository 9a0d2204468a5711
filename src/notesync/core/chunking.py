"""Fixed-size slicing of upload payloads.

Both upload protocols cut files into fixed windows: OneDrive upload
sessions take 320 KiB byte ranges, Baidu takes 4 MiB slices that are
individually MD5-hashed before precreate.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from notesync.core.crypto import md5_hex

SESSION_WINDOW_SIZE = 320 * 1024  # 320 KiB, must be a multiple of 320 KiB for Graph
SLICE_SIZE = 4 * 1024 * 1024  # 4 MiB


@dataclass
class Chunk:
    """A contiguous byte window of a payload."""

    index: int
    offset: int
    data: bytes

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)

    @property
    def end(self) -> int:
        """Inclusive offset of the last byte, as used in Content-Range."""
        return self.offset + len(self.data) - 1


def iter_windows(path: Path, window_size: int) -> Iterator[Chunk]:
    """Read a file as consecutive fixed-size windows.

    The last window may be shorter. An empty file yields nothing.
    """
    if window_size <= 0:
        raise ValueError("window_size must be positive")
    with open(path, "rb") as f:
        index = 0
        offset = 0
        while True:
            data = f.read(window_size)
            if not data:
                return
            yield Chunk(index=index, offset=offset, data=data)
            index += 1
            offset += len(data)


def slice_hashes(path: Path, slice_size: int = SLICE_SIZE) -> list[str]:
    """Compute the MD5 of every slice of a file, in order."""
    return [md5_hex(chunk.data) for chunk in iter_windows(path, slice_size)]


def read_slice(path: Path, index: int, slice_size: int = SLICE_SIZE) -> bytes:
    """Read one slice of a file by position."""
    with open(path, "rb") as f:
        f.seek(index * slice_size)
        return f.read(slice_size)
