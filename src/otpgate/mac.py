"""Keyed hashing for one-time codes.

HMAC here is the RFC 2104 inner/outer-pad construction from the standard
library, so a prefix-extended message never yields a valid tag.
"""

from __future__ import annotations

import hashlib
import hmac
import unicodedata
from enum import StrEnum
from typing import Any, Callable


class HashAlgorithm(StrEnum):
    """Digest used in the HMAC step. Values are the otpauth URI spellings."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"

    @property
    def constructor(self) -> Callable[..., Any]:
        return _CONSTRUCTORS[self]

    @classmethod
    def parse(cls, value: str) -> HashAlgorithm:
        """Accept ``sha1``, ``SHA-256`` and similar spellings."""
        key = value.strip().upper().replace("-", "")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unsupported algorithm {value!r}, must be SHA1, SHA256 or SHA512") from None


_CONSTRUCTORS = {
    HashAlgorithm.SHA1: hashlib.sha1,
    HashAlgorithm.SHA256: hashlib.sha256,
    HashAlgorithm.SHA512: hashlib.sha512,
}


def hmac_digest(key: bytes, message: bytes, algorithm: HashAlgorithm = HashAlgorithm.SHA1) -> bytes:
    """Return HMAC(key, message) under ``algorithm``."""
    return hmac.new(key, message, HashAlgorithm(algorithm).constructor).digest()


def strings_equal(s1: str, s2: str) -> bool:
    """Timing-attack resistant string comparison.

    Both sides are NFKC-normalized first so fullwidth digits typed on some
    keyboards compare equal to their ASCII forms. Length is still revealed.
    """
    s1 = unicodedata.normalize("NFKC", s1)
    s2 = unicodedata.normalize("NFKC", s2)
    return hmac.compare_digest(s1.encode("utf-8"), s2.encode("utf-8"))
