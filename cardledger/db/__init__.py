"""
Storage Layer for the card catalog authority

Provides:
- KeyValueStore abstraction (InMemory for dev/tests, JSON files for single-instance)
- Typed repositories over store namespaces
- Environment-based store configuration
"""

from .store import (
    KeyValueStore,
    InMemoryStore,
    JsonFileStore,
    Repository,
    StoreError,
    StoreUnavailable,
)
from .config import StoreConfig, StoreDriver, create_store
from .repositories import AuthorityRepositories, audit_key, version_key

__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "Repository",
    "StoreError",
    "StoreUnavailable",
    "StoreConfig",
    "StoreDriver",
    "create_store",
    "AuthorityRepositories",
    "audit_key",
    "version_key",
]
