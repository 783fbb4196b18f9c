"""
Secure key/value storage for secrets (PIN hash, encryption key).

Callers only rely on ``get_item`` / ``set_item`` / ``remove_item`` so the
backend can be a platform keychain, a protected file or plain memory in tests.
"""
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from errors import SecureStorageError

logger = logging.getLogger(__name__)


class SecureStorage(ABC):
    """Abstract interface for secret storage."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None when the key is absent."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Delete ``key``; removing a missing key is not an error."""


class MemorySecureStorage(SecureStorage):
    """Process-local storage, used by tests and ephemeral sessions."""

    def __init__(self):
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class FileSecureStorage(SecureStorage):
    """JSON file readable only by the owner (mode 0600), replaced atomically on write."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            raise SecureStorageError(f"Cannot read secure storage {self.path}: {exc}") from exc

    def _save(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".secure-")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise SecureStorageError(f"Cannot write secure storage {self.path}: {exc}") from exc

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load()
            items[key] = value
            self._save(items)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._load()
            if items.pop(key, None) is not None:
                self._save(items)
