"""Remote-tiered action cache.

``RemoteActionCache`` wraps any local store. The local store stays the
source of truth for this machine: every ``put`` lands there first, and a
remote failure never undoes it. When the remote tier is enabled, ``put``
also publishes the action's outputs as content-addressed blobs plus a
descriptor naming them; the descriptor is written only after every blob is
stored, so a partial upload is never visible to other machines. In shared
mode a local miss is answered from the remote descriptor.
"""

import logging
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, TextIO, Union

from action_cache.config import CacheSettings
from action_cache.errors import (
    CorruptEntry,
    ErrorKind,
    ObjectMissing,
    PartialUploadFailure,
    RemoteError,
)
from action_cache.models import CacheEntry, FileDigest, UploadResult
from action_cache.services import digest as digest_codec
from action_cache.services.blob_client import BlobClient
from action_cache.services.uploader import UploadCoordinator
from action_cache.services.wire import OutputRecord, decode_entry, encode_entry
from action_cache.storage.local import LocalActionCache, LocalStoreAdapter

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class RemoteActionCache:
    """Action cache backed by a local store and an object storage bucket.

    Safe for concurrent use from many build workers. Writers of the same
    key are serialized; a cold key requested by several threads at once is
    fetched from the remote tier only once.

    Attributes:
        local: Adapter over the local store
        bucket: Bucket holding blobs and descriptors
        key_prefix: Prefix of every object key
        shared_mode: Answer local misses from the remote tier
        strict_shared: Raise remote errors from ``get`` instead of missing
        materialize_root: Directory fetched outputs are written under
        remote_delete: Delete remote descriptors on ``remove``
    """

    def __init__(
        self,
        local: LocalActionCache,
        blob_client: Optional[BlobClient] = None,
        coordinator: Optional[UploadCoordinator] = None,
        bucket: str = "action-cache",
        key_prefix: str = "",
        shared_mode: bool = False,
        strict_shared: bool = False,
        materialize_root: Optional[Path] = None,
        remote_delete: bool = False,
        signed_url_expiry: timedelta = timedelta(hours=1),
    ):
        """Initialize the cache.

        Args:
            local: Any object satisfying the local cache contract
            blob_client: Object storage client; None runs local-only
            coordinator: Batch uploader; built from ``blob_client`` if omitted
            bucket: Bucket holding blobs and descriptors
            key_prefix: Prefix of every object key
            shared_mode: Answer local misses from the remote tier
            strict_shared: Raise remote errors from ``get`` instead of missing
            materialize_root: Directory fetched outputs are written under
            remote_delete: Delete remote descriptors on ``remove``
            signed_url_expiry: Default lifetime of signed URLs
        """
        self.local = LocalStoreAdapter(local)
        self.blob_client = blob_client
        if blob_client is not None and coordinator is None:
            coordinator = UploadCoordinator(blob_client)
        self.coordinator = coordinator
        self.bucket = bucket
        self.key_prefix = key_prefix
        self.shared_mode = shared_mode
        self.strict_shared = strict_shared
        self.materialize_root = Path(materialize_root) if materialize_root else None
        self.remote_delete = remote_delete
        self.signed_url_expiry = signed_url_expiry

        # key -> [lock, number of threads holding or waiting on it]
        self._key_locks: Dict[str, list] = {}
        self._key_locks_guard = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def from_settings(cls, local: LocalActionCache, settings: CacheSettings) -> "RemoteActionCache":
        """Build a cache from settings.

        With the remote tier disabled no credentials are read and no
        client or thread pool is created.

        Raises:
            MissingCredentials: If the remote tier is enabled without credentials
        """
        if not settings.remote_enabled:
            return cls(local)

        blob_client = BlobClient(
            endpoint_url=settings.endpoint_url,
            region=settings.region,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            max_pool_connections=settings.max_concurrent_uploads + 2,
        )
        coordinator = UploadCoordinator(
            blob_client,
            max_concurrency=settings.max_concurrent_uploads,
            retry_policy=settings.retry_policy,
            skip_existing=settings.skip_existing,
        )
        return cls(
            local,
            blob_client=blob_client,
            coordinator=coordinator,
            bucket=settings.bucket,
            key_prefix=settings.key_prefix,
            shared_mode=settings.shared_mode,
            strict_shared=settings.strict_shared,
            materialize_root=settings.materialize_root,
            remote_delete=settings.remote_delete,
            signed_url_expiry=settings.signed_url_expiry,
        )

    @property
    def remote_enabled(self) -> bool:
        return self.blob_client is not None

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        """Hold the writer lock for ``key``; unused locks are discarded."""
        with self._key_locks_guard:
            slot = self._key_locks.setdefault(key, [threading.Lock(), 0])
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._key_locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._key_locks[key]

    # Cache contract

    def put(
        self, key: str, entry: CacheEntry, outputs: Optional[Sequence[PathLike]] = None
    ) -> List[UploadResult]:
        """Store an entry, publishing freshly produced outputs remotely.

        The local write happens first and stands regardless of what the
        remote tier does.

        Args:
            key: Cache key (one of the action's output paths)
            entry: Populated entry to store
            outputs: Output files produced by this run of the action

        Returns:
            Upload results, empty when nothing was published

        Raises:
            PartialUploadFailure: If any output failed to upload
            RemoteError: If the descriptor could not be written
        """
        with self._key_lock(key):
            self.local.put(key, entry)
            if not self.remote_enabled or not outputs or entry.digest is None:
                return []
            return self._publish(key, entry, [Path(p) for p in outputs])

    def get(self, key: str, strict: Optional[bool] = None) -> Optional[CacheEntry]:
        """Return the entry for ``key``, or None if not cached.

        Args:
            key: Cache key
            strict: Raise remote errors instead of missing; defaults to
                the cache's ``strict_shared`` setting

        Raises:
            RemoteError: Only in strict mode, for failures other than not-found
            CorruptEntry: Only in strict mode
        """
        entry = self.local.get(key)
        if entry is not None or not self.shared_mode or not self.remote_enabled:
            return entry
        if strict is None:
            strict = self.strict_shared
        return self._fetch_once(key, strict)

    def remove(self, key: str) -> None:
        """Remove the local entry.

        The remote descriptor, if remote deletes are enabled, is deleted in
        the background; readers on other machines may still see it briefly.
        """
        with self._key_lock(key):
            self.local.remove(key)
        if self.remote_enabled and self.remote_delete and not self._closed:
            self.coordinator.submit(self._delete_descriptor, key)

    def create_entry(self, key: str, discovers_inputs: bool) -> CacheEntry:
        return self.local.create_entry(key, discovers_inputs)

    def save(self) -> int:
        return self.local.save()

    def dump(self, sink: TextIO) -> None:
        self.local.dump(sink)

    # Remote tier

    def blob_key(self, digest: FileDigest) -> str:
        return digest_codec.blob_key(digest, self.key_prefix)

    def descriptor_key(self, key: str) -> str:
        return digest_codec.descriptor_key(key, self.key_prefix)

    def signed_url(
        self, digest: FileDigest, method: str = "GET", expiry: Optional[timedelta] = None
    ) -> str:
        """Presigned URL for the blob holding content with ``digest``.

        Raises:
            RuntimeError: If the remote tier is disabled
        """
        if not self.remote_enabled:
            raise RuntimeError("Remote caching is disabled")
        return self.blob_client.signed_url(
            self.bucket, self.blob_key(digest), method, expiry or self.signed_url_expiry
        )

    def _record_path(self, path: Path) -> str:
        resolved = path.resolve()
        if self.materialize_root is not None:
            try:
                return resolved.relative_to(self.materialize_root.resolve()).as_posix()
            except ValueError:
                pass
        return resolved.as_posix()

    def _publish(self, key: str, entry: CacheEntry, outputs: List[Path]) -> List[UploadResult]:
        records: List[OutputRecord] = []
        pairs = []
        unreadable: List[UploadResult] = []
        for path in outputs:
            try:
                file_digest = digest_codec.compute_file_digest(path)
                size = path.stat().st_size
            except OSError as e:
                logger.warning(f"Cannot read output {path}: {e}")
                unreadable.append(
                    UploadResult(path, "", success=False, error=ErrorKind.SOURCE_UNREADABLE)
                )
                continue
            object_key = self.blob_key(file_digest)
            pairs.append((path, object_key))
            records.append(
                OutputRecord(
                    path=self._record_path(path),
                    digest=digest_codec.encode(file_digest).hex(),
                    object_key=object_key,
                    size=size,
                )
            )

        try:
            results = self.coordinator.commit(self.bucket, pairs, rejected=unreadable)
        except PartialUploadFailure:
            logger.warning(f"Not publishing {key}: some outputs failed to upload")
            raise

        descriptor = encode_entry(entry, records)
        self.blob_client.put_bytes(self.bucket, self.descriptor_key(key), descriptor)
        logger.info(f"Published {key} ({entry.action_key}) with {len(records)} outputs")
        return results

    def _fetch_once(self, key: str, strict: bool) -> Optional[CacheEntry]:
        with self._inflight_lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                # A fetch that just finished has already populated the local store.
                entry = self.local.get(key)
                if entry is not None:
                    return entry
                future = Future()
                self._inflight[key] = future

        if owner:
            try:
                future.set_result(self._fetch_remote(key))
            except Exception as e:
                future.set_exception(e)
            finally:
                with self._inflight_lock:
                    self._inflight.pop(key, None)

        try:
            return future.result()
        except ObjectMissing:
            return None
        except (RemoteError, CorruptEntry) as e:
            if strict:
                raise
            logger.warning(f"Remote lookup of {key} failed, treating as a miss: {e}")
            return None

    def _fetch_remote(self, key: str) -> CacheEntry:
        data = self.blob_client.get_bytes(self.bucket, self.descriptor_key(key))
        remote_entry, outputs = decode_entry(data)

        if self.materialize_root is not None:
            for record in outputs:
                try:
                    self._materialize(record)
                except OSError as e:
                    raise CorruptEntry(f"cannot materialize {record.path}: {e}") from e

        entry = self.local.create_entry(
            remote_entry.action_key, remote_entry.discovers_inputs
        ).with_digest(remote_entry.digest)
        with self._key_lock(key):
            existing = self.local.get(key)
            if existing is not None:
                return existing
            self.local.put(key, entry)
        logger.info(f"Fetched {key} ({entry.action_key}) from remote cache")
        return entry

    def _materialize(self, record: OutputRecord) -> Path:
        relative = Path(record.path)
        if relative.is_absolute():
            relative = relative.relative_to(relative.anchor)
        root = self.materialize_root.resolve()
        target = (root / relative).resolve()
        if not target.is_relative_to(root):
            raise CorruptEntry(f"output path {record.path!r} escapes {root}")
        expected = digest_codec.decode_hex(record.digest)

        if target.exists() and digest_codec.compute_file_digest(target) == expected:
            return target

        self.blob_client.download(self.bucket, record.object_key, target)
        if digest_codec.compute_file_digest(target) != expected:
            target.unlink()
            raise CorruptEntry(f"{record.object_key} does not match digest {expected.hex}")
        return target

    def _delete_descriptor(self, key: str) -> None:
        with self._key_lock(key):
            # A put since the remove has published a newer descriptor.
            if self.local.get(key) is not None:
                logger.debug(f"Keeping remote descriptor for {key}: re-added locally")
                return
            try:
                self.blob_client.delete(self.bucket, self.descriptor_key(key))
                logger.debug(f"Deleted remote descriptor for {key}")
            except RemoteError as e:
                logger.warning(f"Background delete of remote descriptor for {key} failed: {e}")

    def close(self) -> None:
        """Release the upload pool and storage connections. Idempotent."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self.coordinator is not None:
            self.coordinator.close()
        if self.blob_client is not None:
            self.blob_client.close()

    def __enter__(self) -> "RemoteActionCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_action_cache(local: LocalActionCache, settings: CacheSettings) -> RemoteActionCache:
    """Build the action cache described by ``settings``."""
    return RemoteActionCache.from_settings(local, settings)
