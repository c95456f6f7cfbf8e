"""Exception types raised by the action cache.

Remote-tier errors carry an ``ErrorKind`` so that upload results and
exceptions share a single vocabulary.
"""

from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    """Classification of a failed remote operation."""

    REMOTE_UNAVAILABLE = "remote_unavailable"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    AUTH_FAILURE = "auth_failure"
    OBJECT_MISSING = "object_missing"
    SOURCE_UNREADABLE = "source_unreadable"

    @property
    def transient(self) -> bool:
        """Whether a retry could plausibly succeed."""
        return self in (ErrorKind.REMOTE_UNAVAILABLE, ErrorKind.DEADLINE_EXCEEDED)


class ActionCacheError(Exception):
    """Base class for all action cache errors."""


class MissingCredentials(ActionCacheError):
    """Object storage credentials are absent from the environment."""


class CorruptEntry(ActionCacheError):
    """A stored digest or entry message could not be decoded."""


class RemoteError(ActionCacheError):
    """Error talking to the remote object storage service.

    Attributes:
        kind: Error classification
        key: Object key involved, if any
    """

    kind: ErrorKind = ErrorKind.REMOTE_UNAVAILABLE

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class RemoteUnavailable(RemoteError):
    """Network or service failure."""

    kind = ErrorKind.REMOTE_UNAVAILABLE


class DeadlineExceeded(RemoteError):
    """A remote operation did not finish within its timeout."""

    kind = ErrorKind.DEADLINE_EXCEEDED


class AuthFailure(RemoteError):
    """The storage service rejected our credentials."""

    kind = ErrorKind.AUTH_FAILURE


class ObjectMissing(RemoteError):
    """The requested object does not exist."""

    kind = ErrorKind.OBJECT_MISSING


class PartialUploadFailure(ActionCacheError):
    """Some files of a batch upload failed.

    Attributes:
        failed: Results of the uploads that failed
        results: Results of every upload in the batch, in input order
    """

    def __init__(self, failed: Sequence, results: Sequence):
        self.failed = list(failed)
        self.results = list(results)
        names = ", ".join(str(r.source_file) for r in self.failed)
        super().__init__(
            f"{len(self.failed)} of {len(self.results)} uploads failed: {names}"
        )
