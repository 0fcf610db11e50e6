# src/nrtrace/ids.py
"""Trace/span id minting and the wall clock used for record timestamps."""

from __future__ import annotations

import random
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class IdGenerator(Protocol):
    """Mints vendor identifiers for new spans."""

    def new_trace_id(self) -> str:
        """Return a 128-bit id as 32 lowercase hex characters."""
        ...

    def new_span_id(self) -> str:
        """Return a 64-bit id as 16 lowercase hex characters."""
        ...


class RandomIdGenerator:
    """Random ids from a private PRNG, never all-zero.

    random.Random is safe to share between threads; getrandbits() runs under
    the GIL as one C call.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(seed)

    def _bits(self, bits: int) -> int:
        value = 0
        while value == 0:
            value = self._random.getrandbits(bits)
        return value

    def new_trace_id(self) -> str:
        return f"{self._bits(128):032x}"

    def new_span_id(self) -> str:
        return f"{self._bits(64):016x}"


def now_micros() -> int:
    """Current wall-clock time in epoch microseconds."""
    return time.time_ns() // 1_000
