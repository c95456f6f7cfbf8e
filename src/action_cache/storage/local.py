"""Local action cache stores.

The remote tier only depends on the ``LocalActionCache`` contract. Two
implementations are provided: an in-memory store and a JSON file store
that persists on ``save()``.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, TextIO, runtime_checkable

from action_cache.errors import CorruptEntry
from action_cache.models import CacheEntry
from action_cache.services import digest as digest_codec

logger = logging.getLogger(__name__)


@runtime_checkable
class LocalActionCache(Protocol):
    """Contract of a local key to entry store."""

    def get(self, key: str) -> Optional[CacheEntry]: ...

    def put(self, key: str, entry: CacheEntry) -> None: ...

    def remove(self, key: str) -> None: ...

    def create_entry(self, key: str, discovers_inputs: bool) -> CacheEntry: ...

    def save(self) -> int: ...

    def dump(self, sink: TextIO) -> None: ...


class LocalStoreAdapter:
    """Pass-through to any object satisfying ``LocalActionCache``.

    Attributes:
        store: The wrapped local store
    """

    def __init__(self, store: LocalActionCache):
        self.store = store

    def get(self, key: str) -> Optional[CacheEntry]:
        return self.store.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        self.store.put(key, entry)

    def remove(self, key: str) -> None:
        self.store.remove(key)

    def create_entry(self, key: str, discovers_inputs: bool) -> CacheEntry:
        return self.store.create_entry(key, discovers_inputs)

    def save(self) -> int:
        return self.store.save()

    def dump(self, sink: TextIO) -> None:
        self.store.dump(sink)


def _format_entry(key: str, entry: CacheEntry) -> str:
    digest = entry.digest.hex if entry.digest is not None else "-"
    flags = " discovers-inputs" if entry.discovers_inputs else ""
    return f"{key}: action={entry.action_key} digest={digest}{flags}"


class InMemoryActionCache:
    """Thread-safe, non-persistent local store."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def create_entry(self, key: str, discovers_inputs: bool) -> CacheEntry:
        return CacheEntry(action_key=key, discovers_inputs=discovers_inputs)

    def save(self) -> int:
        return 0

    def dump(self, sink: TextIO) -> None:
        with self._lock:
            items = sorted(self._entries.items())
        sink.write(f"Action cache ({len(items)} entries)\n")
        for key, entry in items:
            sink.write(_format_entry(key, entry) + "\n")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DiskActionCache(InMemoryActionCache):
    """Local store persisted as a JSON file.

    Entries are loaded at construction and written back on ``save()``.
    Digests are stored in their encoded binary form, hex encoded.

    Attributes:
        path: JSON file backing the store
    """

    def __init__(self, path: Path):
        """Initialize the store, loading any existing entries.

        Args:
            path: JSON file backing the store
        """
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            entries = {}
            for key, raw in data.get("entries", {}).items():
                digest_hex = raw.get("digest")
                entries[key] = CacheEntry(
                    action_key=raw["action_key"],
                    digest=digest_codec.decode_hex(digest_hex) if digest_hex else None,
                    discovers_inputs=bool(raw.get("discovers_inputs", False)),
                )
        except (json.JSONDecodeError, OSError, KeyError, AttributeError, CorruptEntry) as e:
            logger.warning(f"Ignoring unreadable action cache at {self.path}: {e}")
            return
        self._entries = entries
        logger.debug(f"Loaded {len(entries)} entries from {self.path}")

    def save(self) -> int:
        """Write all entries to disk.

        Returns:
            Size in bytes of the serialized cache
        """
        with self._lock:
            entries = {
                key: {
                    "action_key": entry.action_key,
                    "digest": (
                        digest_codec.encode(entry.digest).hex()
                        if entry.digest is not None
                        else None
                    ),
                    "discovers_inputs": entry.discovers_inputs,
                }
                for key, entry in self._entries.items()
            }
        payload = json.dumps({"entries": entries}, indent=2, sort_keys=True).encode("utf-8")

        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, self.path)
        logger.debug(f"Saved {len(entries)} entries ({len(payload)} bytes) to {self.path}")
        return len(payload)
