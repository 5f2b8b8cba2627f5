"""RFC 4648 base32 without padding, lenient on input.

The stdlib ``base64.b32decode`` rejects spaces, hyphens and missing padding,
all of which show up when people copy a secret by hand, so decoding here
walks the characters itself and ignores anything outside the alphabet.
"""

from __future__ import annotations

from otpgate.errors import InvalidSecretEncoding

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}


def encode(data: bytes) -> str:
    """Encode bytes as unpadded base32 (``A-Z2-7``)."""
    out: list[str] = []
    buffer = 0
    bits = 0
    for byte in data:
        buffer = (buffer << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            out.append(ALPHABET[(buffer >> bits) & 0x1F])
        buffer &= (1 << bits) - 1
    if bits:
        # zero-fill the final group
        out.append(ALPHABET[(buffer << (5 - bits)) & 0x1F])
    return "".join(out)


def decode(text: str) -> bytes:
    """Decode base32 text. Case-insensitive; unknown characters are skipped.

    Leftover bits that do not complete a byte are dropped.
    """
    out = bytearray()
    buffer = 0
    bits = 0
    for ch in text.upper():
        value = _INDEX.get(ch)
        if value is None:
            continue
        buffer = (buffer << 5) | value
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((buffer >> bits) & 0xFF)
            buffer &= (1 << bits) - 1
    return bytes(out)


def decode_secret(text: str) -> bytes:
    """Decode a shared secret, raising if nothing usable is in ``text``."""
    if not isinstance(text, str):
        raise InvalidSecretEncoding(f"Secret must be a base32 string, got {type(text).__name__}")
    raw = decode(text)
    if not raw:
        raise InvalidSecretEncoding("Secret contains no base32 data")
    return raw
