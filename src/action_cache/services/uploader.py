"""Concurrent batch uploads for one action's output files.

Every file in a batch is uploaded on a shared thread pool and the batch
waits for all of them, so callers always get the full list of results
rather than the first error.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple

from action_cache.errors import ErrorKind, PartialUploadFailure, RemoteError
from action_cache.models import UploadResult
from action_cache.services.blob_client import BlobClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient upload failures.

    Attributes:
        max_attempts: Total attempts per file, 1 disables retries
        initial_backoff: Seconds to wait before the first retry
        max_backoff: Upper bound on a single wait
        multiplier: Growth factor between waits
    """

    max_attempts: int = 3
    initial_backoff: float = 0.2
    max_backoff: float = 5.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return min(self.initial_backoff * (self.multiplier ** (attempt - 1)), self.max_backoff)

    def should_retry(self, error: ErrorKind, attempt: int) -> bool:
        return error.transient and attempt < self.max_attempts


class UploadCoordinator:
    """Uploads batches of files and reports one aggregated outcome.

    The thread pool is created once and shared by every batch; it is shut
    down by ``close()``, never per batch.

    Attributes:
        blob_client: Client used for each single-file upload
        max_concurrency: Upper bound on simultaneous uploads
        retry_policy: Policy for transient failures
        skip_existing: Skip objects already present remotely
    """

    def __init__(
        self,
        blob_client: BlobClient,
        max_concurrency: int = 8,
        retry_policy: RetryPolicy = RetryPolicy(),
        skip_existing: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the coordinator.

        Args:
            blob_client: Client used for each single-file upload
            max_concurrency: Upper bound on simultaneous uploads
            retry_policy: Policy for transient failures
            skip_existing: Skip objects already present remotely
            sleep: Function used to wait between retries
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.blob_client = blob_client
        self.max_concurrency = max_concurrency
        self.retry_policy = retry_policy
        self.skip_existing = skip_existing
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrency, thread_name_prefix="action-cache-upload"
        )
        self._closed = False
        self._lock = threading.Lock()

    def submit(self, fn: Callable, *args) -> Future:
        """Run a background task on the shared pool."""
        return self._executor.submit(fn, *args)

    def _upload_one(self, bucket: str, source_file: Path, object_key: str) -> UploadResult:
        if self.skip_existing:
            try:
                if self.blob_client.exists(bucket, object_key):
                    logger.debug(f"Skipping {source_file}: {object_key} already stored")
                    return UploadResult(source_file, object_key, success=True, skipped=True)
            except RemoteError as e:
                # The upload itself will surface a persistent problem.
                logger.debug(f"Existence check for {object_key} failed: {e}")

        attempt = 1
        while True:
            result = self.blob_client.upload(bucket, object_key, source_file)
            if result.success or not self.retry_policy.should_retry(result.error, attempt):
                return result
            delay = self.retry_policy.backoff(attempt)
            logger.info(
                f"Retrying upload of {source_file} after {result.error.value} "
                f"(attempt {attempt}/{self.retry_policy.max_attempts}, waiting {delay:.2f}s)"
            )
            self._sleep(delay)
            attempt += 1

    def upload_all(
        self, bucket: str, pairs: Sequence[Tuple[Path, str]]
    ) -> List[UploadResult]:
        """Upload every ``(source_file, object_key)`` pair and wait for all.

        Pairs sharing an object key are uploaded once; each pair still gets
        its own result.

        Args:
            bucket: Destination bucket
            pairs: Files and the keys to store them under

        Returns:
            One result per pair, in input order
        """
        if self._closed:
            raise RuntimeError("UploadCoordinator is closed")

        futures: Dict[str, Future] = {}
        for source_file, object_key in pairs:
            if object_key not in futures:
                futures[object_key] = self._executor.submit(
                    self._upload_one, bucket, Path(source_file), object_key
                )
        wait(futures.values())

        results = []
        for source_file, object_key in pairs:
            shared = futures[object_key].result()
            if Path(source_file) != shared.source_file:
                shared = UploadResult(
                    Path(source_file),
                    object_key,
                    success=shared.success,
                    error=shared.error,
                    skipped=True if shared.success else shared.skipped,
                )
            results.append(shared)
        return results

    def commit(
        self,
        bucket: str,
        pairs: Sequence[Tuple[Path, str]],
        rejected: Sequence[UploadResult] = (),
    ) -> List[UploadResult]:
        """Upload a batch and require that every file succeeded.

        Args:
            bucket: Destination bucket
            pairs: Files and the keys to store them under
            rejected: Failed results for files of the batch that could not
                be submitted at all; they still fail the commit

        Returns:
            One result per pair in input order, followed by ``rejected``

        Raises:
            PartialUploadFailure: If any upload failed or anything was rejected
        """
        results = self.upload_all(bucket, pairs) + list(rejected)
        failed = [r for r in results if not r.success]
        if failed:
            logger.warning(f"{len(failed)} of {len(results)} uploads failed")
            raise PartialUploadFailure(failed, results)
        uploaded = sum(1 for r in results if not r.skipped)
        logger.info(f"Committed {len(results)} objects ({uploaded} uploaded)")
        return results

    def close(self) -> None:
        """Shut down the thread pool, waiting for running uploads."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
