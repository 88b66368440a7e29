"""
Wire codec for the provenance program's "create photo record" instruction.

Layout (all integers little-endian):

    discriminator  8 bytes   sha256("global:create_photo_data")[:8]
    hash32        32 bytes   BLAKE3 content hash of the photo
    storage_uri    u32 len + UTF-8 bytes
    location       u32 len + UTF-8 bytes
    timestamp      u32 len + UTF-8 bytes   (absent in older records)

Encoding is strict and raises ValidationFailed before anything is
submitted. Decoding never raises: it returns either CreatePhotoArgs or a
DecodeSkip describing why the payload was not indexed.

Decoding runs an ordered list of strategies. The schema strategy reads the
current layout exactly; the positional strategy tolerates records written
before the timestamp field existed. The first strategy that succeeds wins.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple, Union

from indexer.app.errors import DecodeSkip, ValidationFailed


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DISCRIMINATOR_PREIMAGE = b"global:create_photo_data"
DISCRIMINATOR_LEN = 8
CREATE_PHOTO_DISCRIMINATOR: bytes = hashlib.sha256(
    DISCRIMINATOR_PREIMAGE
).digest()[:DISCRIMINATOR_LEN]

HASH_LEN = 32
LENGTH_PREFIX_LEN = 4
MAX_STRING_BYTES = 256

_U32 = struct.Struct("<I")


@dataclass(frozen=True)
class CreatePhotoArgs:
    """Decoded instruction arguments."""

    hash32: bytes
    storage_uri: str
    location: str
    timestamp: Optional[str] = None

    @property
    def hash_hex(self) -> str:
        return self.hash32.hex()


DecodeResult = Union[CreatePhotoArgs, DecodeSkip]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _length_prefixed(value: str, field: str, limit: Optional[int]) -> bytes:
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be a string")
    raw = value.encode("utf-8")
    if limit is not None and len(raw) > limit:
        raise ValidationFailed(
            f"{field} is {len(raw)} bytes; maximum is {limit} bytes"
        )
    return _U32.pack(len(raw)) + raw


def encode_create_photo(
    hash32: bytes,
    storage_uri: str,
    location: str,
    timestamp: Optional[str] = None,
) -> bytes:
    """
    Encode the instruction payload.

    The timestamp suffix is omitted when timestamp is None, producing the
    older record layout.
    """
    if not isinstance(hash32, (bytes, bytearray)) or len(hash32) != HASH_LEN:
        raise ValidationFailed(f"hash32 must be exactly {HASH_LEN} bytes")

    parts = [
        CREATE_PHOTO_DISCRIMINATOR,
        bytes(hash32),
        _length_prefixed(storage_uri, "storage_uri", MAX_STRING_BYTES),
        _length_prefixed(location, "location", MAX_STRING_BYTES),
    ]
    if timestamp is not None:
        parts.append(_length_prefixed(timestamp, "timestamp", None))
    return b"".join(parts)


# ---------------------------------------------------------------------------
# Bounds-checked reader
# ---------------------------------------------------------------------------

class _Reader:
    """Cursor over a byte buffer. Reads past the end return None."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = data
        self._offset = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def take(self, n: int) -> Optional[bytes]:
        if n < 0 or n > self.remaining:
            return None
        chunk = self._data[self._offset:self._offset + n]
        self._offset += n
        return chunk

    def u32(self) -> Optional[int]:
        raw = self.take(LENGTH_PREFIX_LEN)
        if raw is None:
            return None
        return _U32.unpack(raw)[0]

    def length_prefixed(self) -> Optional[bytes]:
        length = self.u32()
        if length is None:
            return None
        return self.take(length)


def _has_discriminator(data: bytes) -> bool:
    return data[:DISCRIMINATOR_LEN] == CREATE_PHOTO_DISCRIMINATOR


# ---------------------------------------------------------------------------
# Decoder strategies
# ---------------------------------------------------------------------------

class DecoderStrategy(Protocol):
    name: str

    def decode(self, data: bytes) -> DecodeResult:
        ...


class FixedBytes:
    def __init__(self, size: int) -> None:
        self.size = size

    def read(self, reader: _Reader) -> Optional[bytes]:
        return reader.take(self.size)


class Utf8String:
    def read(self, reader: _Reader) -> Optional[str]:
        raw = reader.length_prefixed()
        if raw is None:
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return None


CREATE_PHOTO_LAYOUT: Tuple[Tuple[str, object], ...] = (
    ("hash32", FixedBytes(HASH_LEN)),
    ("storage_uri", Utf8String()),
    ("location", Utf8String()),
    ("timestamp", Utf8String()),
)


class SchemaDecoder:
    """
    Decode against a declarative field layout.

    Every field is required and the layout must consume the whole buffer.
    """

    name = "schema"

    def __init__(self, layout: Sequence[Tuple[str, object]] = CREATE_PHOTO_LAYOUT) -> None:
        self._layout = tuple(layout)

    def decode(self, data: bytes) -> DecodeResult:
        if not _has_discriminator(data):
            return DecodeSkip("discriminator_mismatch")

        reader = _Reader(data, DISCRIMINATOR_LEN)
        values = {}
        for field, kind in self._layout:
            value = kind.read(reader)
            if value is None:
                return DecodeSkip(f"field_unreadable:{field}")
            values[field] = value

        if reader.remaining:
            return DecodeSkip(f"trailing_bytes:{reader.remaining}")

        return CreatePhotoArgs(**values)


class PositionalDecoder:
    """
    Manual positional decode for records that predate the timestamp field.

    The timestamp is read only when a full length prefix remains. Invalid
    UTF-8 is replaced rather than rejected.
    """

    name = "positional"

    def decode(self, data: bytes) -> DecodeResult:
        if not _has_discriminator(data):
            return DecodeSkip("discriminator_mismatch")

        reader = _Reader(data, DISCRIMINATOR_LEN)

        hash32 = reader.take(HASH_LEN)
        if hash32 is None:
            return DecodeSkip("truncated:hash32")

        storage_uri = reader.length_prefixed()
        if storage_uri is None:
            return DecodeSkip("truncated:storage_uri")

        location = reader.length_prefixed()
        if location is None:
            return DecodeSkip("truncated:location")

        timestamp: Optional[bytes] = None
        if reader.remaining >= LENGTH_PREFIX_LEN:
            timestamp = reader.length_prefixed()
            if timestamp is None:
                return DecodeSkip("truncated:timestamp")

        return CreatePhotoArgs(
            hash32=hash32,
            storage_uri=storage_uri.decode("utf-8", errors="replace"),
            location=location.decode("utf-8", errors="replace"),
            timestamp=(
                timestamp.decode("utf-8", errors="replace")
                if timestamp is not None
                else None
            ),
        )


DEFAULT_STRATEGIES: Tuple[DecoderStrategy, ...] = (
    SchemaDecoder(),
    PositionalDecoder(),
)


def decode_create_photo(
    data: bytes,
    strategies: Sequence[DecoderStrategy] = DEFAULT_STRATEGIES,
) -> DecodeResult:
    """
    Decode an instruction payload. Never raises.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return DecodeSkip("not_bytes")
    data = bytes(data)

    if len(data) < DISCRIMINATOR_LEN or not _has_discriminator(data):
        return DecodeSkip("discriminator_mismatch")

    reasons = []
    for strategy in strategies:
        try:
            result = strategy.decode(data)
        except Exception as exc:
            # A misbehaving strategy must not break the no-raise contract
            result = DecodeSkip(f"error:{type(exc).__name__}")

        if isinstance(result, CreatePhotoArgs):
            return result
        reasons.append(f"{strategy.name}={result.reason}")

    return DecodeSkip(", ".join(reasons) or "no_strategies")
