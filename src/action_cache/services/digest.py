"""File digests and their binary serialization.

The binary form is a single length byte followed by the raw digest bytes.
It is embedded in entry messages, and the digest's hex form is the suffix
of every content-addressed object key, so byte-identical outputs of
unrelated actions share one remote object.
"""

import hashlib
from pathlib import Path

from action_cache.errors import CorruptEntry
from action_cache.models import FileDigest

CHUNK_SIZE = 8192


def encode(digest: FileDigest) -> bytes:
    """Serialize a digest to its binary form.

    Args:
        digest: Digest to serialize

    Returns:
        Length byte followed by the digest bytes
    """
    return bytes([len(digest.value)]) + digest.value


def decode(data: bytes, algorithm: str = "sha256") -> FileDigest:
    """Deserialize a digest produced by ``encode``.

    Args:
        data: Serialized digest
        algorithm: Algorithm name to attach to the result

    Returns:
        The decoded digest

    Raises:
        CorruptEntry: If ``data`` is empty, truncated, or has trailing bytes
    """
    if not data:
        raise CorruptEntry("empty digest")
    length = data[0]
    if length == 0:
        raise CorruptEntry("zero-length digest")
    if len(data) - 1 != length:
        raise CorruptEntry(
            f"digest length byte says {length}, found {len(data) - 1} bytes"
        )
    return FileDigest(bytes(data[1:]), algorithm)


def decode_hex(hex_data: str, algorithm: str = "sha256") -> FileDigest:
    """Decode the hex form of an encoded digest.

    Raises:
        CorruptEntry: If ``hex_data`` is not hex or does not decode
    """
    try:
        raw = bytes.fromhex(hex_data)
    except (TypeError, ValueError) as e:
        raise CorruptEntry(f"digest is not valid hex: {hex_data!r}") from e
    return decode(raw, algorithm)


def compute_file_digest(file_path: Path, algorithm: str = "sha256") -> FileDigest:
    """Compute the digest of a file's contents.

    Reads in 8 KiB chunks so arbitrarily large files are handled without
    loading the entire file into memory.

    Args:
        file_path: Path to the file to hash
        algorithm: Any algorithm name accepted by ``hashlib.new``

    Returns:
        Digest of the file contents

    Raises:
        FileNotFoundError: If the file does not exist
    """
    hasher = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return FileDigest(hasher.digest(), algorithm)


def _join(prefix: str, *parts: str) -> str:
    prefix = prefix.strip("/")
    return "/".join([prefix, *parts]) if prefix else "/".join(parts)


def blob_key(digest: FileDigest, prefix: str = "") -> str:
    """Object key of the blob holding content with ``digest``.

    Args:
        digest: Content digest
        prefix: Key prefix inside the bucket

    Returns:
        Key of the form ``{prefix}/cas/{hex}``
    """
    return _join(prefix, "cas", digest.hex)


def descriptor_key(cache_key: str, prefix: str = "") -> str:
    """Object key of the entry descriptor stored for ``cache_key``.

    Cache keys are output paths, so they are hashed to keep object keys
    flat and of bounded length.

    Args:
        cache_key: Local cache key
        prefix: Key prefix inside the bucket

    Returns:
        Key of the form ``{prefix}/ac/{sha256(cache_key)}``
    """
    return _join(prefix, "ac", hashlib.sha256(cache_key.encode("utf-8")).hexdigest())
