"""Rolling 32-bit string hash used for all change-detection fingerprints."""

from __future__ import annotations

_MASK = 0xFFFFFFFF
_SIGN_BIT = 0x80000000


def string_hash(text: str) -> str:
    """Hash *text* with ``h = h * 31 + code`` in signed 32-bit arithmetic.

    Iterates UTF-16 code units so that characters outside the BMP hash the
    same way a JavaScript or Java string hash would.  Returns the signed
    result as a decimal string.
    """
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        h = (h * 31 + (data[i] | (data[i + 1] << 8))) & _MASK
    if h & _SIGN_BIT:
        h -= 1 << 32
    return str(h)
