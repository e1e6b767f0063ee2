"""
ULID identifiers.

Job and target ids are 26-character, lexicographically sortable ULIDs:
48 bits of millisecond timestamp followed by 80 random bits, encoded in
Crockford base32.
"""

from __future__ import annotations

import os
from datetime import datetime

ULID_LENGTH = 26

_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def new_ulid(at: datetime | None = None) -> str:
    """Generate a ULID, stamped with `at` (defaults to the current time)."""
    ts = int((at or datetime.now()).timestamp() * 1000)
    value = (ts << 80) | int.from_bytes(os.urandom(10), "big")
    chars = []
    for _ in range(ULID_LENGTH):
        chars.append(_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def is_valid_ulid(value: object) -> bool:
    """True for a 26-character alphanumeric string."""
    return (
        isinstance(value, str)
        and len(value) == ULID_LENGTH
        and value.isascii()
        and value.isalnum()
    )
