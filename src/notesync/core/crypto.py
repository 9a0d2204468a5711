"""Cryptographic helpers for notesync.

This module provides:
- Authenticated encryption of small blobs (token records) with AES-256-GCM
- Digest helpers used by the upload protocols and page commits
"""

from __future__ import annotations

import hashlib
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)


def generate_key() -> bytes:
    """Generate a random 256-bit AES key."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def encrypt_blob(data: bytes, key: bytes) -> bytes:
    """Encrypt data using AES-256-GCM with a random nonce.

    Args:
        data: Plaintext data to encrypt.
        key: 32-byte encryption key.

    Returns:
        Encrypted data in format: nonce (12 bytes) || ciphertext || auth_tag (16 bytes)
    """
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, data, None)


def decrypt_blob(encrypted: bytes, key: bytes) -> bytes:
    """Decrypt data produced by encrypt_blob.

    Raises:
        cryptography.exceptions.InvalidTag: If authentication fails (wrong key or tampered data).
        ValueError: If the payload is too short to hold a nonce.
    """
    if len(encrypted) <= NONCE_SIZE:
        raise ValueError("Encrypted payload is too short")
    nonce = encrypted[:NONCE_SIZE]
    ciphertext = encrypted[NONCE_SIZE:]
    return AESGCM(key).decrypt(nonce, ciphertext, None)


def md5_hex(data: bytes) -> str:
    """Lower-case hex MD5 digest, as expected by the Baidu slice protocol."""
    return hashlib.md5(data).hexdigest()  # noqa: S324 - protocol checksum, not security


def sha256_hex(data: bytes) -> str:
    """Hex SHA-256 digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()
