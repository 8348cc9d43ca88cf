from __future__ import annotations

import os
import re
import time
import uuid

from awaredb.errors import InvalidIdentifier

# 8-4-4-4-12 hex groups of a canonical UUID
_UUID_GROUPS = (8, 4, 4, 4, 12)
_HEX32 = re.compile(r"^[0-9a-fA-F]{32}$")


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    UUIDv7 layout per draft:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness
    """
    ts_ms = int(time.time() * 1000)
    ts_bytes = ts_ms.to_bytes(6, "big", signed=False)
    rand_bytes = os.urandom(10)
    raw = bytearray(ts_bytes + rand_bytes)
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def strip_uuid_dashes(value: str) -> str:
    return value.replace("-", "")


def restore_uuid_dashes(value: str) -> str:
    """
    Turn a dash-stripped UUID back into the canonical dashed form.

    Existing dashes are ignored, so an already dashed UUID round-trips.
    Raises InvalidIdentifier unless exactly 32 hex digits remain.
    """
    clean = strip_uuid_dashes(value or "")
    if not _HEX32.match(clean):
        raise InvalidIdentifier()
    parts = []
    offset = 0
    for size in _UUID_GROUPS:
        parts.append(clean[offset:offset + size])
        offset += size
    return "-".join(parts)
