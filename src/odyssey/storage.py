"""
Secure key-value storage for wallet and delegation state.

The device keystore is an opaque get/set blob store; ``FileSecureStore`` is
the local stand-in with owner-only permissions, atomic writes and a file
lock so two processes never interleave a save.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, Protocol

from .errors import SchemaError, StorageError
from .models import StoredWallet

logger = logging.getLogger(__name__)

WALLET_STORAGE_KEY = "odyssey_wallet"
STATE_STORAGE_KEY = "odyssey_state"

_SAFE_ID_RE = re.compile(r"[^a-zA-Z0-9._-]")


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def ensure_private_file(path: Path) -> None:
    if not path.exists():
        path.touch()
    os.chmod(path, 0o600)


def sanitize_identifier(value: str) -> str:
    """Return a filesystem-safe identifier."""
    return _SAFE_ID_RE.sub("_", value)


def safe_child_path(base_dir: Path, identifier: str, suffix: str) -> Path:
    """Build a canonical child path under base_dir and reject traversal."""
    safe_name = sanitize_identifier(identifier)
    path = (base_dir / f"{safe_name}{suffix}").resolve()
    base = base_dir.resolve()
    if path.parent != base:
        raise ValueError(f"Unsafe path for identifier: {identifier}")
    return path


class SecureStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemorySecureStore:
    """In-process store for tests and ephemeral use."""

    def __init__(self):
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class FileSecureStore:
    """One private file per key under ``base_dir``."""

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        ensure_private_dir(self.base_dir)
        self._lock_path = self.base_dir / ".lock"
        ensure_private_file(self._lock_path)

    @contextmanager
    def _lock(self):
        with open(self._lock_path, "r+") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

    def _path(self, key: str) -> Path:
        return safe_child_path(self.base_dir, key, ".json")

    def get(self, key: str) -> Optional[str]:
        with self._lock():
            path = self._path(key)
            if not path.exists():
                return None
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                raise StorageError(f"Failed to read {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        with self._lock():
            path = self._path(key)
            tmp_path = path.with_suffix(path.suffix + f".tmp.{os.getpid()}")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    f.write(value)
                    f.flush()
                    os.fsync(f.fileno())
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, path)
            except OSError as e:
                raise StorageError(f"Failed to write {key}: {e}") from e

    def delete(self, key: str) -> None:
        with self._lock():
            path = self._path(key)
            if path.exists():
                path.unlink()


def load_json(store: SecureStore, key: str) -> Optional[Any]:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt entry {key}: {e}") from e


def save_json(store: SecureStore, key: str, payload: Any) -> None:
    store.set(key, json.dumps(payload, indent=2, sort_keys=True))


def load_wallet(store: SecureStore) -> Optional[StoredWallet]:
    """Stored wallet, or None when onboarding has not happened."""
    payload = load_json(store, WALLET_STORAGE_KEY)
    if payload is None:
        return None
    try:
        return StoredWallet.from_dict(payload)
    except SchemaError as e:
        raise StorageError(f"Corrupt wallet entry: {e}") from e


def save_wallet(store: SecureStore, stored: StoredWallet) -> None:
    save_json(store, WALLET_STORAGE_KEY, stored.to_dict())
    logger.info("Wallet stored: %s", stored.wallet.public_key)
