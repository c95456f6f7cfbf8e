"""Entry descriptor wire format.

A descriptor is the UTF-8 JSON form of ``EntryMessage``. Peers running a
different build-tool version must be able to read it, so the format is
versioned explicitly and unknown versions decode as corrupt.
"""

import json
from typing import List, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from action_cache.errors import CorruptEntry
from action_cache.models import CacheEntry
from action_cache.services import digest as digest_codec

FORMAT_VERSION = 1


class OutputRecord(BaseModel):
    """One output file referenced by an entry descriptor."""

    path: str
    digest: str  # hex of digest_codec.encode()
    object_key: str
    size: int = Field(ge=0)

    @field_validator("path")
    @classmethod
    def path_stays_inside_root(cls, value: str) -> str:
        parts = value.replace("\\", "/").split("/")
        if not value.strip("/") or ".." in parts:
            raise ValueError(f"output path must be non-empty and free of '..': {value!r}")
        return value


class EntryMessage(BaseModel):
    """Remote form of a cache entry."""

    format_version: int = FORMAT_VERSION
    action_key: str
    digest: str  # hex of digest_codec.encode()
    discovers_inputs: bool = False
    outputs: List[OutputRecord] = Field(default_factory=list)


def encode_entry(entry: CacheEntry, outputs: Sequence[OutputRecord] = ()) -> bytes:
    """Serialize an entry and its outputs to descriptor bytes.

    Raises:
        ValueError: If the entry has no digest yet
    """
    if entry.digest is None:
        raise ValueError(f"entry for {entry.action_key!r} has no digest")
    message = EntryMessage(
        action_key=entry.action_key,
        digest=digest_codec.encode(entry.digest).hex(),
        discovers_inputs=entry.discovers_inputs,
        outputs=list(outputs),
    )
    return message.model_dump_json().encode("utf-8")


def decode_entry(data: bytes) -> Tuple[CacheEntry, List[OutputRecord]]:
    """Parse descriptor bytes back into an entry and its outputs.

    Raises:
        CorruptEntry: If the bytes are not a valid descriptor of a known version
    """
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptEntry(f"descriptor is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise CorruptEntry("descriptor is not a JSON object")
    version = raw.get("format_version")
    if version != FORMAT_VERSION:
        raise CorruptEntry(f"unsupported descriptor format version: {version!r}")
    try:
        message = EntryMessage.model_validate(raw)
    except ValidationError as e:
        raise CorruptEntry(f"invalid descriptor: {e}") from e

    for output in message.outputs:
        digest_codec.decode_hex(output.digest)
    entry = CacheEntry(
        action_key=message.action_key,
        digest=digest_codec.decode_hex(message.digest),
        discovers_inputs=message.discovers_inputs,
    )
    return entry, message.outputs
