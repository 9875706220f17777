# =============================================================================
# Rolling String Hash — 32-bit multiply-shift
# =============================================================================
#
# One hash function shared by the local embedder (positional and filler
# features) and the response cache (key derivation):
#
#     hash = ((hash << 5) - hash) + code_unit     # i.e. hash * 31 + c
#     hash = wrap to signed 32-bit
#
# The input is walked as UTF-16 code units, not code points, so characters
# outside the Basic Multilingual Plane contribute two units (a surrogate
# pair). This keeps vectors and cache keys bit-identical to the values the
# browser client produced for the same text.
# =============================================================================

from __future__ import annotations

import struct

_INT32_MAX = 2**31 - 1


def _utf16_code_units(text: str) -> tuple[int, ...]:
    """Return the UTF-16 code units of `text` (surrogate pairs split)."""
    encoded = text.encode("utf-16-le", errors="surrogatepass")
    return struct.unpack(f"<{len(encoded) // 2}H", encoded)


def rolling_hash(text: str) -> int:
    """
    Signed 32-bit rolling hash of `text`.

    Returns a value in [-2**31, 2**31 - 1].
    """
    value = 0
    for unit in _utf16_code_units(text):
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value > _INT32_MAX:
        value -= 2**32
    return value


def hash_to_unit_float(text: str) -> float:
    """
    Map `text` to a float via abs(rolling_hash) / (2**31 - 1).

    The result lies in [0, 1] except for the single hash value -2**31,
    whose absolute value maps to 1.0000000005.
    """
    return abs(rolling_hash(text)) / _INT32_MAX


def hash_key(text: str) -> str:
    """Stringified absolute rolling hash, used as a cache key."""
    return str(abs(rolling_hash(text)))
