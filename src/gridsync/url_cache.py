"""Persistent cache of last-known-working signed URLs.

Entries are keyed by storage reference and stored as JSON
``{"url", "storageRef", "expires"}`` under ``<namespace>_url_cache_<ref>``
in a durable key-value store. Document ids a refresh resolved to a storage
reference are linked under ``<namespace>_url_ref_<documentId>`` with the
same TTL. Eviction is lazy: stale entries are removed when read.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from loguru import logger

from gridsync.config import DEFAULT_CACHE_TTL_SECONDS
from gridsync.model import SignedURL, StorageReference, URLCacheEntry

if TYPE_CHECKING:
    from gridsync.config import Settings

KEYRING_SERVICE = "gridsync"


class KeyValueStore(ABC):
    """Durable string key-value store scoped to one user."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...


class MemoryStore(KeyValueStore):
    """In-process store. Nothing survives the process."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """All keys in one JSON file, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable URL cache file {}: {}", self._path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=self._path.name, suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class KeyringStore(KeyValueStore):
    """Store backed by the OS keyring (Keychain, Credential Locker, Secret Service)."""

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self._service = service

    def get(self, key: str) -> str | None:
        try:
            return keyring.get_password(self._service, key)
        except KeyringError as e:
            logger.warning("OS keyring unavailable, treating {} as absent: {}", key, e)
            return None

    def set(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self._service, key, value)
        except KeyringError as e:
            logger.warning("OS keyring unavailable, not caching {}: {}", key, e)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
        except PasswordDeleteError:
            pass  # Already absent
        except KeyringError as e:
            logger.warning("OS keyring unavailable, could not delete {}: {}", key, e)


def build_store(settings: Settings) -> KeyValueStore:
    """Create the key-value store selected by ``cache_backend``."""
    if settings.cache_backend == "keyring":
        return KeyringStore()
    if settings.cache_backend == "memory":
        return MemoryStore()
    return JsonFileStore(settings.cache_dir / "url_cache.json")


class URLCache:
    """TTL cache mapping a storage reference to a working signed URL.

    The TTL must stay shorter than the backend's signed-URL lifetime.

    Args:
        store: Durable key-value store holding the entries.
        ttl_seconds: How long an entry stays valid after it is written.
        namespace: Key prefix family, ``excel`` or ``file``.
        clock: Returns the current Unix time; injectable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        namespace: str = "file",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._namespace = namespace
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> URLCache:
        return cls(
            build_store(settings),
            ttl_seconds=settings.cache_ttl_seconds,
            namespace=settings.cache_namespace,
        )

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def key_for(self, storage_ref: StorageReference) -> str:
        return f"{self._namespace}_url_cache_{storage_ref}"

    def put(self, storage_ref: StorageReference, url: str) -> URLCacheEntry:
        """Store a URL for a storage reference, replacing any previous entry."""
        entry = URLCacheEntry(storage_ref=storage_ref, url=url, cached_at=self._clock())
        payload = {
            "url": url,
            "storageRef": storage_ref,
            "expires": entry.cached_at + self._ttl,
        }
        self._store.set(self.key_for(storage_ref), json.dumps(payload))
        logger.debug("Cached working URL for storageRef {}", storage_ref)
        return entry

    def get(self, storage_ref: StorageReference) -> SignedURL | None:
        """Return the cached URL if it is still within its TTL."""
        key = self.key_for(storage_ref)
        raw = self._store.get(key)
        if raw is None:
            return None

        try:
            data = json.loads(raw)
            url = data["url"]
            expires = float(data["expires"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping invalid URL cache entry {}: {}", key, e)
            self._store.delete(key)
            return None

        if self._clock() < expires:
            return SignedURL(url=url, expires_at=expires)

        logger.debug("Cached URL expired for storageRef {}", storage_ref)
        self._store.delete(key)
        return None

    def invalidate(self, storage_ref: StorageReference) -> None:
        """Forget the cached URL for a storage reference."""
        self._store.delete(self.key_for(storage_ref))

    def link_key_for(self, document_id: str) -> str:
        return f"{self._namespace}_url_ref_{document_id}"

    def link(self, document_id: str, storage_ref: StorageReference) -> None:
        """Remember which storage reference a document id resolved to."""
        payload = {
            "documentId": document_id,
            "storageRef": storage_ref,
            "expires": self._clock() + self._ttl,
        }
        self._store.set(self.link_key_for(document_id), json.dumps(payload))

    def ref_for(self, document_id: str) -> StorageReference | None:
        """Return the storage reference linked to a document id, if still fresh."""
        key = self.link_key_for(document_id)
        raw = self._store.get(key)
        if raw is None:
            return None

        try:
            data = json.loads(raw)
            storage_ref = data["storageRef"]
            expires = float(data["expires"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping invalid URL cache link {}: {}", key, e)
            self._store.delete(key)
            return None

        if self._clock() < expires and isinstance(storage_ref, str) and storage_ref:
            return storage_ref
        self._store.delete(key)
        return None
