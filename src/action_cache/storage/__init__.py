"""Local action cache stores."""

from action_cache.storage.local import (
    DiskActionCache,
    InMemoryActionCache,
    LocalActionCache,
    LocalStoreAdapter,
)

__all__ = ["DiskActionCache", "InMemoryActionCache", "LocalActionCache", "LocalStoreAdapter"]
