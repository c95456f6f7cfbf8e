"""Value types shared by the local and remote cache tiers."""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from action_cache.errors import ErrorKind


@dataclass(frozen=True)
class FileDigest:
    """Content hash of a single file.

    Two digests are equal iff their bytes are equal; the algorithm name is
    informational and does not take part in comparisons.

    Attributes:
        value: Raw digest bytes
        algorithm: Hash algorithm that produced ``value``
    """

    value: bytes
    algorithm: str = field(default="sha256", compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.value, bytes):
            raise TypeError(f"digest value must be bytes, got {type(self.value).__name__}")
        if not 0 < len(self.value) < 256:
            raise ValueError(f"digest length must be 1..255 bytes, got {len(self.value)}")

    @property
    def hex(self) -> str:
        return self.value.hex()

    @classmethod
    def from_hex(cls, hex_digest: str, algorithm: str = "sha256") -> "FileDigest":
        """Build a digest from its hex representation.

        Raises:
            ValueError: If ``hex_digest`` is not valid hex
        """
        return cls(bytes.fromhex(hex_digest), algorithm)

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"


@dataclass(frozen=True)
class CacheEntry:
    """Record of an action key plus the digest of its outputs at last run.

    Entries are immutable; use ``with_digest`` to produce the populated
    version of a freshly created entry.

    Attributes:
        action_key: Fingerprint of the action's command and inputs
        digest: Output digest, None until the entry is populated
        discovers_inputs: Whether the action's inputs are only known after execution
    """

    action_key: str
    digest: Optional[FileDigest] = None
    discovers_inputs: bool = False

    def with_digest(self, digest: FileDigest) -> "CacheEntry":
        return replace(self, digest=digest)


@dataclass(frozen=True)
class UploadResult:
    """Outcome of uploading one file.

    Attributes:
        source_file: Local file that was uploaded
        remote_object_key: Object key within the bucket
        success: Whether the object is now stored remotely
        error: Failure classification when ``success`` is False
        skipped: True when the object already existed and was not re-sent
    """

    source_file: Path
    remote_object_key: str
    success: bool
    error: Optional[ErrorKind] = None
    skipped: bool = False
