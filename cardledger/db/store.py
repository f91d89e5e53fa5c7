"""
Key/Value Store Abstraction

This module defines the KeyValueStore interface and two implementations:
- InMemoryStore: for development, tests and the on-device outbox
- JsonFileStore: one JSON file per namespace, for single-instance deployments

The store only holds JSON-compatible dicts under
(namespace, key). Typing, validation and business rules live above it, in
Repository and the authority.

Durability beyond "written to a file" is a non-goal; any engine offering
get/put/list per namespace can implement KeyValueStore.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import RLock
from typing import Callable, Generic, Optional, Type, TypeVar

from pydantic import BaseModel


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(Exception):
    """Base exception for store errors."""


class StoreUnavailable(StoreError):
    """Raised when the backing medium cannot be read or written."""


# ============================================================
# INTERFACE
# ============================================================

class KeyValueStore(ABC):
    """
    Namespaced key/value storage of JSON-compatible dicts.

    Implementations must be safe to call from multiple threads. Values are
    copied on the way in and out, so callers never share mutable state with
    the store.
    """

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[dict]:
        """Return the stored value, or None."""
        pass

    @abstractmethod
    def put(self, namespace: str, key: str, value: dict) -> None:
        """Insert or replace the value under key."""
        pass

    @abstractmethod
    def delete(self, namespace: str, key: str) -> None:
        """Remove key if present."""
        pass

    @abstractmethod
    def list_all(self, namespace: str) -> list[dict]:
        """All values in the namespace, in insertion order."""
        pass

    @abstractmethod
    def ping(self) -> bool:
        """True if the store is reachable. Used by health checks."""
        pass


def _copy(value: dict) -> dict:
    # Round-trip through JSON: both a deep copy and a JSON-compatibility check
    return json.loads(json.dumps(value))


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryStore(KeyValueStore):
    """
    In-memory implementation of KeyValueStore.

    Suitable for development, testing and client outboxes.
    NOT suitable for production: nothing survives a restart.
    """

    def __init__(self):
        self._data: dict[str, dict[str, dict]] = {}
        self._lock = RLock()

    def get(self, namespace: str, key: str) -> Optional[dict]:
        with self._lock:
            value = self._data.get(namespace, {}).get(key)
            return _copy(value) if value is not None else None

    def put(self, namespace: str, key: str, value: dict) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = _copy(value)

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)

    def list_all(self, namespace: str) -> list[dict]:
        with self._lock:
            return [_copy(v) for v in self._data.get(namespace, {}).values()]

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Clear all data (for testing only)."""
        with self._lock:
            self._data.clear()


# ============================================================
# JSON FILE IMPLEMENTATION
# ============================================================

class JsonFileStore(KeyValueStore):
    """
    One `<namespace>.json` file per namespace under a root directory.

    Each namespace is loaded lazily and cached; every put rewrites the
    namespace file atomically (write to temp file, then rename).
    """

    def __init__(self, root: str):
        self._root = Path(root)
        self._cache: dict[str, dict[str, dict]] = {}
        self._lock = RLock()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create store directory {self._root}: {e}") from e

    def _path(self, namespace: str) -> Path:
        if not namespace.replace("_", "").isalnum():
            raise StoreError(f"Invalid namespace name: {namespace!r}")
        return self._root / f"{namespace}.json"

    def _load(self, namespace: str) -> dict[str, dict]:
        if namespace in self._cache:
            return self._cache[namespace]
        path = self._path(namespace)
        if path.exists():
            try:
                with path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StoreUnavailable(f"Cannot read {path}: {e}") from e
        else:
            data = {}
        self._cache[namespace] = data
        return data

    def _flush(self, namespace: str) -> None:
        path = self._path(namespace)
        try:
            fd, tmp = tempfile.mkstemp(dir=self._root, prefix=f".{namespace}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._cache[namespace], f, ensure_ascii=False, separators=(",", ":"))
            os.replace(tmp, path)
        except OSError as e:
            raise StoreUnavailable(f"Cannot write {path}: {e}") from e

    def get(self, namespace: str, key: str) -> Optional[dict]:
        with self._lock:
            value = self._load(namespace).get(key)
            return _copy(value) if value is not None else None

    def put(self, namespace: str, key: str, value: dict) -> None:
        with self._lock:
            self._load(namespace)[key] = _copy(value)
            self._flush(namespace)

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            data = self._load(namespace)
            if key in data:
                del data[key]
                self._flush(namespace)

    def list_all(self, namespace: str) -> list[dict]:
        with self._lock:
            return [_copy(v) for v in self._load(namespace).values()]

    def ping(self) -> bool:
        return self._root.is_dir() and os.access(self._root, os.W_OK)


# ============================================================
# TYPED REPOSITORY
# ============================================================

M = TypeVar("M", bound=BaseModel)


class Repository(Generic[M]):
    """
    Typed view over one namespace.

    Models are stored in their wire form (`by_alias=True`, JSON mode) and
    re-validated on read, so a record read back equals the record written.
    """

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        model: Type[M],
        key: Callable[[M], str],
    ):
        self._store = store
        self.namespace = namespace
        self._model = model
        self._key = key

    def get(self, key: str) -> Optional[M]:
        data = self._store.get(self.namespace, key)
        return self._model.model_validate(data) if data is not None else None

    def put(self, item: M) -> M:
        self._store.put(self.namespace, self._key(item), item.model_dump(mode="json", by_alias=True))
        return item

    def delete(self, key: str) -> None:
        self._store.delete(self.namespace, key)

    def list_all(self) -> list[M]:
        return [self._model.model_validate(d) for d in self._store.list_all(self.namespace)]

    def __contains__(self, key: str) -> bool:
        return self._store.get(self.namespace, key) is not None

    def key_of(self, item: M) -> str:
        return self._key(item)

    def keys(self) -> list[str]:
        return [self._key(item) for item in self.list_all()]
