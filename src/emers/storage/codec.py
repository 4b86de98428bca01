"""Binary codec for the event database file.

Layout (little-endian)::

    header  = magic "EMER" | version u32 | record_count u64 | crc32 u32
    record  = len u32 | payload[len] | crc32 u32 (over len and payload)
    payload = symbol[16] | date[16] | type u8 | pad[3] | magnitude f64
              | sentiment f32 | impact i8 | pad[3] | timestamp i64
              | desc_len u16 | desc | url_len u16 | url | source_len u16 | source

Fixed-width text fields are NUL-padded. Records carry no id: the id of a
record is its 1-based position in the file.
"""

from __future__ import annotations

import datetime as dt
import struct
import zlib
from typing import Iterable

from emers.exceptions import CorruptDatabaseError, StorageError
from emers.types import DetectedEvent, EventType, Symbol

MAGIC = b"EMER"
VERSION = 1

HEADER = struct.Struct("<4sIQI")
HEADER_BODY = struct.Struct("<4sIQ")
RECORD_LEN = struct.Struct("<I")
RECORD_CRC = struct.Struct("<I")
FIXED_PAYLOAD = struct.Struct("<16s16sB3xdfb3xq")
STRING_LEN = struct.Struct("<H")

MAX_STRING_BYTES = 0xFFFF
FIXED_TEXT_BYTES = 16


def crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def _truncate_utf8(text: str, limit: int = MAX_STRING_BYTES) -> bytes:
    """Encode ``text`` as UTF-8, cut to ``limit`` bytes on a character boundary."""
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return raw
    return raw[:limit].decode("utf-8", errors="ignore").encode("utf-8")


def _fixed_text(text: str, field: str) -> bytes:
    try:
        raw = text.encode("ascii")
    except UnicodeEncodeError as e:
        raise StorageError(f"{field} must be ASCII: {text!r}") from e
    if len(raw) > FIXED_TEXT_BYTES:
        raise StorageError(f"{field} longer than {FIXED_TEXT_BYTES} bytes: {text!r}")
    return raw


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_header(record_count: int) -> bytes:
    body = HEADER_BODY.pack(MAGIC, VERSION, record_count)
    return body + RECORD_CRC.pack(crc32(body))


def encode_payload(event: DetectedEvent) -> bytes:
    parts = [
        FIXED_PAYLOAD.pack(
            _fixed_text(event.symbol, "symbol"),
            event.date.isoformat().encode("ascii"),
            event.type.code,
            event.magnitude,
            event.sentiment,
            event.impact_score,
            event.timestamp,
        )
    ]
    for text in (event.description, event.url, event.source):
        raw = _truncate_utf8(text)
        parts.append(STRING_LEN.pack(len(raw)))
        parts.append(raw)
    return b"".join(parts)


def encode_record(event: DetectedEvent) -> bytes:
    """Length-prefixed, checksummed record for one event."""
    payload = encode_payload(event)
    framed = RECORD_LEN.pack(len(payload)) + payload
    return framed + RECORD_CRC.pack(crc32(framed))


def encode_image(records: Iterable[bytes]) -> bytes:
    """Whole database file from already encoded records."""
    records = list(records)
    return encode_header(len(records)) + b"".join(records)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_header(data: bytes) -> int:
    """Validate the header and return the record count.

    :raises CorruptDatabaseError: On a short file, wrong magic or version,
        or a checksum mismatch.
    """
    if len(data) < HEADER.size:
        raise CorruptDatabaseError("File shorter than header", size=len(data))
    magic, version, count, checksum = HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise CorruptDatabaseError("Bad magic", magic=magic.hex())
    if checksum != crc32(data[: HEADER_BODY.size]):
        raise CorruptDatabaseError("Header checksum mismatch")
    if version != VERSION:
        raise CorruptDatabaseError(f"Unsupported version {version}", version=version)
    return count


def _read_string(payload: bytes, offset: int) -> tuple[str, int]:
    if offset + STRING_LEN.size > len(payload):
        raise CorruptDatabaseError("Truncated string length", offset=offset)
    (length,) = STRING_LEN.unpack_from(payload, offset)
    offset += STRING_LEN.size
    end = offset + length
    if end > len(payload):
        raise CorruptDatabaseError("Truncated string", offset=offset)
    try:
        return payload[offset:end].decode("utf-8"), end
    except UnicodeDecodeError as e:
        raise CorruptDatabaseError(f"Invalid UTF-8 in record: {e}") from e


def decode_payload(payload: bytes, record_id: int) -> DetectedEvent:
    if len(payload) < FIXED_PAYLOAD.size:
        raise CorruptDatabaseError("Truncated payload", record=record_id)
    symbol, date, code, magnitude, sentiment, impact, timestamp = FIXED_PAYLOAD.unpack_from(payload, 0)
    offset = FIXED_PAYLOAD.size
    description, offset = _read_string(payload, offset)
    url, offset = _read_string(payload, offset)
    source, offset = _read_string(payload, offset)
    if offset != len(payload):
        raise CorruptDatabaseError("Unexpected bytes after payload", record=record_id)
    try:
        return DetectedEvent(
            id=record_id,
            symbol=Symbol(symbol.rstrip(b"\0").decode("ascii")),
            date=dt.date.fromisoformat(date.rstrip(b"\0").decode("ascii")),
            type=EventType.from_code(code),
            description=description,
            magnitude=magnitude,
            sentiment=sentiment,
            impact_score=impact,
            source=source,
            url=url,
            timestamp=timestamp,
        )
    except ValueError as e:
        raise CorruptDatabaseError(f"Invalid record {record_id}: {e}", record=record_id) from e


def encode_stored(event: DetectedEvent, record_id: int) -> tuple[DetectedEvent, bytes]:
    """Encode ``event`` under ``record_id`` and decode it back.

    The returned event is exactly what a later :func:`decode_image` yields:
    long text is truncated and numbers carry their on-disk precision.
    """
    record = encode_record(event.model_copy(update={"id": record_id}))
    stored = decode_payload(record[RECORD_LEN.size : -RECORD_CRC.size], record_id)
    return stored, record


def decode_image(data: bytes) -> tuple[list[DetectedEvent], list[bytes]]:
    """Decode and verify a whole database file.

    Every record checksum, the record count and the absence of trailing bytes
    are verified.

    :returns: The events (ids assigned by position) and their raw records.
    :raises CorruptDatabaseError: If any check fails.
    """
    count = decode_header(data)
    events: list[DetectedEvent] = []
    records: list[bytes] = []
    offset = HEADER.size
    for record_id in range(1, count + 1):
        if offset + RECORD_LEN.size > len(data):
            raise CorruptDatabaseError(
                f"Expected {count} records, found {record_id - 1}", expected=count, found=record_id - 1
            )
        (length,) = RECORD_LEN.unpack_from(data, offset)
        end = offset + RECORD_LEN.size + length
        if end + RECORD_CRC.size > len(data):
            raise CorruptDatabaseError("Truncated record", record=record_id)
        framed = data[offset:end]
        (checksum,) = RECORD_CRC.unpack_from(data, end)
        if checksum != crc32(framed):
            raise CorruptDatabaseError("Record checksum mismatch", record=record_id)
        events.append(decode_payload(framed[RECORD_LEN.size :], record_id))
        records.append(data[offset : end + RECORD_CRC.size])
        offset = end + RECORD_CRC.size
    if offset != len(data):
        raise CorruptDatabaseError("Trailing bytes after last record", extra=len(data) - offset)
    return events, records


__all__ = [
    "MAGIC",
    "VERSION",
    "encode_header",
    "encode_record",
    "encode_image",
    "encode_stored",
    "decode_header",
    "decode_image",
]
