"""Encrypted per-account token persistence."""

from __future__ import annotations

import base64
import binascii
import contextlib
import json
import logging
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag

from notesync.core.crypto import decrypt_blob, encrypt_blob
from notesync.core.models import TokenData

logger = logging.getLogger(__name__)


class TokenStore:
    """Reads and writes one account's TokenData as an AES-GCM encrypted file.

    The file holds base64(nonce || ciphertext || tag) of the JSON token
    record. A missing, unreadable or undecryptable file loads as None so
    a damaged token file only means "not authenticated".
    """

    def __init__(self, directory: Path, account_id: str, key: bytes) -> None:
        self._directory = Path(directory)
        self._account_id = account_id
        self._key = key

    @staticmethod
    def path_for(directory: Path, account_id: str) -> Path:
        """Location of an account's encrypted token file."""
        return Path(directory) / f"tokens-{account_id}.enc"

    @property
    def path(self) -> Path:
        return self.path_for(self._directory, self._account_id)

    def load(self) -> TokenData | None:
        """Load tokens, or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            encrypted = base64.b64decode(self.path.read_bytes(), validate=True)
            data = json.loads(decrypt_blob(encrypted, self._key))
            return TokenData.from_dict(data)
        except (OSError, binascii.Error, InvalidTag, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable token file {self.path}: {e}")
            return None

    def save(self, tokens: TokenData) -> None:
        """Encrypt and write tokens atomically."""
        self._directory.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(tokens.to_dict()).encode("utf-8")
        encoded = base64.b64encode(encrypt_blob(payload, self._key))
        tmp_path = self.path.with_suffix(".enc.tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(encoded)
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        """Delete the token file if present."""
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
