"""
Store Configuration

Environment Variables:
    CARDLEDGER_STORE_DRIVER: Which store to use
        - "memory" (default)
        - "json" (one JSON file per namespace, needs CARDLEDGER_STORE_PATH)
    CARDLEDGER_STORE_PATH: Directory for the json driver (default ./data)
"""

import os
from dataclasses import dataclass
from enum import Enum

from .store import InMemoryStore, JsonFileStore, KeyValueStore


class StoreDriver(str, Enum):
    """Supported store drivers."""
    MEMORY = "memory"
    JSON = "json"


@dataclass
class StoreConfig:
    driver: StoreDriver = StoreDriver.MEMORY
    path: str = "./data"

    @classmethod
    def from_env(cls) -> "StoreConfig":
        explicit = os.getenv("CARDLEDGER_STORE_DRIVER", "memory").lower()
        try:
            driver = StoreDriver(explicit)
        except ValueError:
            raise ValueError(
                f"Unknown CARDLEDGER_STORE_DRIVER: {explicit}. "
                f"Valid values: {', '.join(d.value for d in StoreDriver)}"
            ) from None
        return cls(driver=driver, path=os.getenv("CARDLEDGER_STORE_PATH", "./data"))


def create_store(config: StoreConfig) -> KeyValueStore:
    """Instantiate the configured store."""
    if config.driver == StoreDriver.JSON:
        return JsonFileStore(config.path)
    return InMemoryStore()
