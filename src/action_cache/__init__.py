"""Action result cache with a remote object-storage tier.

Build tools consult the cache before executing an action; an entry records
the digest of the action's outputs from its last run. The remote tier
shares entries and outputs between machines through an S3-compatible
bucket.
"""

__version__ = "0.1.0"

from action_cache.cache import RemoteActionCache, create_action_cache
from action_cache.config import CacheSettings, load_settings
from action_cache.errors import (
    ActionCacheError,
    AuthFailure,
    CorruptEntry,
    DeadlineExceeded,
    ErrorKind,
    MissingCredentials,
    ObjectMissing,
    PartialUploadFailure,
    RemoteError,
    RemoteUnavailable,
)
from action_cache.models import CacheEntry, FileDigest, UploadResult
from action_cache.storage.local import DiskActionCache, InMemoryActionCache, LocalActionCache

__all__ = [
    "ActionCacheError",
    "AuthFailure",
    "CacheEntry",
    "CacheSettings",
    "CorruptEntry",
    "DeadlineExceeded",
    "DiskActionCache",
    "ErrorKind",
    "FileDigest",
    "InMemoryActionCache",
    "LocalActionCache",
    "MissingCredentials",
    "ObjectMissing",
    "PartialUploadFailure",
    "RemoteActionCache",
    "RemoteError",
    "RemoteUnavailable",
    "UploadResult",
    "create_action_cache",
    "load_settings",
]
