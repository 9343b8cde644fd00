# src/perpindexer/domain/value_objects.py
"""
Value objects and fixed-point arithmetic for on-chain values.

On-chain amounts are plain integers in raw units, interpreted as
``raw / 10**decimals``. Two scales are in use:

- ``COLLATERAL_DECIMALS`` (6) for the collateral asset (margin, deposits).
- ``WAD_DECIMALS`` (18) for price, size, leverage, PnL and notional.

Raw integers are kept as ``int`` end to end. Anything that leaves the process
(SQL columns, JSON files, REST rows) goes through ``encode_fixed`` /
``decode_fixed`` so a value is never coerced into a binary float.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

COLLATERAL_DECIMALS = 6
WAD_DECIMALS = 18
WAD = 10 ** WAD_DECIMALS

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")
_INT_STR_RE = re.compile(r"^-?[0-9]+$")


def _div_trunc(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero (big-integer semantics, not floor)."""
    q = abs(numerator) // abs(denominator)
    return q if (numerator >= 0) == (denominator > 0) else -q


def mul_wad(a: int, b: int) -> int:
    """Multiply two 18-decimal values, truncating toward zero."""
    return _div_trunc(a * b, WAD)


# --- Codec boundary ---

def encode_fixed(raw: int) -> str:
    """Encode a raw fixed-point integer as a decimal string."""
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise TypeError(f"encode_fixed expects int, got {type(raw).__name__}")
    return str(raw)


def decode_fixed(value: Any) -> int:
    """
    Decode a decimal-string fixed-point value back to ``int``.

    Plain ints are accepted as-is. Floats, booleans, exponents and fractional
    strings are rejected: any of them means precision was already lost.
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a fixed-point value")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        s = value.strip()
        if _INT_STR_RE.match(s):
            return int(s)
    raise ValueError(f"Not a fixed-point decimal string: {value!r}")


def encode_optional(raw: int | None) -> str | None:
    return None if raw is None else encode_fixed(raw)


def decode_optional(value: Any) -> int | None:
    return None if value is None else decode_fixed(value)


# --- Identifiers ---

def normalize_address(value: Any) -> str:
    """Lowercase a 20-byte hex address; raises ValueError when malformed."""
    if not isinstance(value, str):
        raise ValueError(f"Address must be a string, got {type(value).__name__}")
    v = value.strip().lower()
    if not _ADDRESS_RE.match(v):
        raise ValueError(f"Invalid address: '{value}'")
    return v


def normalize_hash(value: Any) -> str:
    """Lowercase a 32-byte hex hash; raises ValueError when malformed."""
    if not isinstance(value, str):
        raise ValueError(f"Hash must be a string, got {type(value).__name__}")
    v = value.strip().lower()
    if not _HASH_RE.match(v):
        raise ValueError(f"Invalid block hash: '{value}'")
    return v


@dataclass(frozen=True)
class IdentityKey:
    """Replay-stable identity of a raw log: (block_hash, log_index)."""
    block_hash: str
    log_index: int

    def __str__(self) -> str:
        return f"{self.block_hash}-{self.log_index}"
