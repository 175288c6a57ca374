"""32-bit rolling fingerprint of a canonical payload."""
from typing import Tuple

MASK32 = 0xFFFFFFFF


def code_units(payload: str) -> Tuple[int, ...]:
    """Return the UTF-16 code units of ``payload``.

    Characters outside the BMP contribute their surrogate pair, so lengths and
    indices agree with charCodeAt-style string APIs.
    """
    raw = payload.encode("utf-16-le", "surrogatepass")
    return tuple(int.from_bytes(raw[i:i + 2], "little") for i in range(0, len(raw), 2))


def fold(units) -> int:
    acc = 0
    for unit in units:
        acc = ((acc << 5) - acc + unit) & MASK32
    return acc


def content_hash(payload: str) -> int:
    """Fingerprint ``payload``: acc = (acc * 31 + unit) mod 2**32 over its code units.

    >>> content_hash("")
    0
    >>> content_hash("a")
    97
    """
    return fold(code_units(payload))
