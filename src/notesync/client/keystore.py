"""Storage key management for encrypted token files.

This module provides:
- The 256-bit key used to encrypt per-account token files
- OS keyring storage for that key, with a keyfile fallback on systems
  without a usable keyring backend
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

import keyring
from keyring.errors import KeyringError

from notesync.core.crypto import KEY_SIZE, generate_key

logger = logging.getLogger(__name__)

KEYFILE_NAME = "keyfile.json"
KEYRING_SERVICE = "notesync"
KEYRING_KEY_NAME = "token-storage-key"


class KeyStoreError(Exception):
    """Exception raised for keystore-related errors."""


def _decode_key(encoded: str) -> bytes:
    try:
        key = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyStoreError("Invalid key format: not valid base64") from e
    if len(key) != KEY_SIZE:
        raise KeyStoreError(f"Invalid key: must be {KEY_SIZE} bytes, got {len(key)}")
    return key


class KeyStore:
    """Provides the token storage key for a config directory.

    Lookup order: OS keyring, then ``keyfile.json`` in the config
    directory. When neither holds a key, a new one is generated and stored
    in the keyring, or in the keyfile if the keyring is unavailable.
    """

    def __init__(self, config_dir: Path) -> None:
        self._config_dir = Path(config_dir)
        self._key: bytes | None = None

    @property
    def keyfile(self) -> Path:
        """Path of the fallback keyfile."""
        return self._config_dir / KEYFILE_NAME

    @property
    def storage_key(self) -> bytes:
        """Get the storage key, creating it on first use."""
        if self._key is None:
            self._key = self._load() or self._create()
        return self._key

    def _load(self) -> bytes | None:
        cached: str | None = None
        with contextlib.suppress(KeyringError):
            cached = keyring.get_password(KEYRING_SERVICE, KEYRING_KEY_NAME)
        if cached:
            return _decode_key(cached)

        if self.keyfile.exists():
            try:
                data = json.loads(self.keyfile.read_text())
                return _decode_key(data["key"])
            except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
                raise KeyStoreError(f"Corrupted keyfile at {self.keyfile}") from e
        return None

    def _create(self) -> bytes:
        key = generate_key()
        encoded = base64.b64encode(key).decode()
        try:
            keyring.set_password(KEYRING_SERVICE, KEYRING_KEY_NAME, encoded)
            logger.info("Created token storage key in OS keyring")
            return key
        except KeyringError as e:
            logger.warning(f"OS keyring unavailable ({e}), storing key in {self.keyfile}")

        self._config_dir.mkdir(parents=True, exist_ok=True)
        data = {"key": encoded, "created_at": datetime.now(UTC).isoformat()}
        fd = os.open(self.keyfile, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(json.dumps(data, indent=2))
        return key
