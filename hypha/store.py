"""Persistent key-value storage for a node and its identity key."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

IDENTITY_KEY = "node_identity_key"
DB_FILENAME = "hypha.db"
_KEY_LEN = 32
_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

Bytesish = Union[str, bytes, bytearray, memoryview]


def _to_bytes(value: Bytesish) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def _b58encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    digits = []
    while n:
        n, r = divmod(n, 58)
        digits.append(_B58_ALPHABET[r])
    zeros = len(data) - len(data.lstrip(b"\0"))
    return "1" * zeros + "".join(reversed(digits))


def derive_peer_id(signing_key: Union[Ed25519PrivateKey, bytes]) -> str:
    """Return the base58 peer id of an Ed25519 key (identity multihash of its public key)."""
    if not isinstance(signing_key, Ed25519PrivateKey):
        raw = bytes(signing_key)
        if len(raw) != _KEY_LEN:
            raise ValueError(f"signing key must be {_KEY_LEN} bytes, got {len(raw)}")
        signing_key = Ed25519PrivateKey.from_private_bytes(raw)
    public = signing_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    # Protobuf PublicKey { Type = Ed25519 (1), Data = public }
    encoded = bytes([0x08, 0x01, 0x12, len(public)]) + public
    multihash = bytes([0x00, len(encoded)]) + encoded
    return _b58encode(multihash)


class NodeStore:
    """A durable key-value store kept in a directory."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path / DB_FILENAME, check_same_thread=False)
        with self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key BLOB PRIMARY KEY, value BLOB NOT NULL)"
            )

    def __enter__(self) -> "NodeStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get(self, key: Bytesish) -> Optional[bytes]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv WHERE key = ?", (_to_bytes(key),)
            ).fetchone()
        return None if row is None else bytes(row[0])

    def insert(self, key: Bytesish, value: Bytesish) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (_to_bytes(key), _to_bytes(value)),
            )

    def keys_with_prefix(self, prefix: Bytesish) -> list[str]:
        """Return the keys starting with ``prefix``, in byte order."""
        raw_prefix = _to_bytes(prefix)
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM kv WHERE key >= ? ORDER BY key", (raw_prefix,)
            ).fetchall()
        keys = []
        for (key,) in rows:
            key = bytes(key)
            if not key.startswith(raw_prefix):
                break
            keys.append(key.decode("utf-8", errors="replace"))
        return keys

    def load_or_create_signing_key(self) -> Ed25519PrivateKey:
        """Return the persisted identity key, generating and storing one if absent."""
        stored = self.get(IDENTITY_KEY)
        if stored is not None:
            if len(stored) != _KEY_LEN:
                raise ValueError(
                    f"stored identity key must be {_KEY_LEN} bytes, got {len(stored)}"
                )
            return Ed25519PrivateKey.from_private_bytes(stored)
        key = Ed25519PrivateKey.generate()
        self.insert(
            IDENTITY_KEY,
            key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption()),
        )
        return key

    def close(self) -> None:
        with self._lock:
            self._conn.close()