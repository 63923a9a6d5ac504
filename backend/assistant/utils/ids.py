from __future__ import annotations

import os
import time
import uuid


def new_time_ordered_id() -> str:
    """Return a UUIDv7 hex token.

    The leading 48 bits hold the Unix time in milliseconds, so tokens sort by
    creation order; the remaining 74 bits are random, so concurrent callers
    never collide the way a sequence counter could.
    """

    timestamp_ms = time.time_ns() // 1_000_000
    random_bits = int.from_bytes(os.urandom(10), byteorder="big")
    rand_a = random_bits >> 68
    rand_b = random_bits & ((1 << 62) - 1)

    value = (timestamp_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= rand_a << 64
    value |= 0b10 << 62
    value |= rand_b
    return uuid.UUID(int=value).hex
