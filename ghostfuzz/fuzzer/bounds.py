"""Bound mapper — maps raw 256-bit fuzz values into closed ranges.

Every value the generator hands to a handler is a raw unsigned 256-bit
integer. ``bound`` reduces it into ``[lo, hi]`` without modulo bias: raw
values that land in the final, partial bucket of the raw space are re-mixed
through SHA-256 until they fall below the largest multiple of the range
size. Re-mixing is a pure function of the raw value, so the mapping stays
deterministic.

Raw values smaller than the range size map to ``lo + raw``. The generator
and the shrinker rely on this: a concrete value ``v`` drawn against bounds
``lo`` is stored as the raw *offset* ``v - lo``, and shrinking that offset
toward zero walks the concrete value toward the lower bound.
"""

from __future__ import annotations

import hashlib

from ghostfuzz.fuzzer.errors import BoundError

RAW_BITS = 256
RAW_SPACE = 1 << RAW_BITS
RAW_MAX = RAW_SPACE - 1


def remix(raw: int) -> int:
    """Deterministically scramble a raw value (SHA-256 over its bytes)."""
    digest = hashlib.sha256(raw.to_bytes(RAW_BITS // 8, "big")).digest()
    return int.from_bytes(digest, "big")


def bound(raw: int, lo: int, hi: int) -> int:
    """Map ``raw`` into ``[lo, hi]`` inclusive."""
    if lo > hi:
        raise BoundError(f"empty range [{lo}, {hi}]")
    if raw < 0 or raw > RAW_MAX:
        raise BoundError(f"raw value {raw} outside the {RAW_BITS}-bit space")

    size = hi - lo + 1
    if size > RAW_SPACE:
        raise BoundError(f"range [{lo}, {hi}] is wider than the raw space")
    if size == 1:
        return lo

    limit = RAW_SPACE - RAW_SPACE % size
    while raw >= limit:
        raw = remix(raw)
    return lo + raw % size


def offset_for(value: int, lo: int) -> int:
    """Raw offset that ``bound`` maps back to ``value`` for a range starting at ``lo``."""
    return value - lo


def derive_seed(seed: int, *labels: object) -> int:
    """Derive an independent 64-bit seed from a campaign seed and labels.

    Used to give each run (and each worker) its own PRNG stream, so runs can
    be executed in any order or in parallel and still replay identically.
    """
    material = ":".join([str(seed), *(str(label) for label in labels)])
    return int.from_bytes(hashlib.sha256(material.encode()).digest()[:8], "big")
