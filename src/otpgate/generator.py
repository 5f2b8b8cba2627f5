"""Secret and recovery-code generation from the OS CSPRNG."""

from __future__ import annotations

import logging
import math
import secrets
import string

from otpgate import base32
from otpgate.errors import EntropyUnavailable

logger = logging.getLogger(__name__)

RECOVERY_ALPHABET = string.ascii_uppercase + string.digits
MIN_SECRET_BYTES = 20
MIN_RECOVERY_BITS = 30


def generate_secret(byte_length: int = MIN_SECRET_BYTES) -> str:
    """Return a new base32 TOTP secret of ``byte_length`` random bytes."""
    if byte_length < MIN_SECRET_BYTES:
        raise ValueError("Secrets should be at least 160 bits")
    try:
        raw = secrets.token_bytes(byte_length)
    except (NotImplementedError, OSError) as e:
        raise EntropyUnavailable("Secure random source unavailable") from e
    return base32.encode(raw)


def normalize_recovery_code(text: str) -> str:
    return text.strip().upper()


def generate_recovery_codes(
    count: int = 10,
    length: int = 8,
    alphabet: str = RECOVERY_ALPHABET,
) -> tuple[str, ...]:
    """Return ``count`` distinct single-use codes.

    Each code must carry at least 30 bits; duplicates are re-rolled.
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    bits = length * math.log2(len(set(alphabet))) if alphabet else 0.0
    if bits < MIN_RECOVERY_BITS:
        raise ValueError(f"Recovery codes need at least {MIN_RECOVERY_BITS} bits, got {bits:.1f}")

    codes: list[str] = []
    seen: set[str] = set()
    try:
        while len(codes) < count:
            code = "".join(secrets.choice(alphabet) for _ in range(length))
            if code in seen:
                logger.debug("Recovery code collision, re-rolling")
                continue
            seen.add(code)
            codes.append(code)
    except (NotImplementedError, OSError) as e:
        raise EntropyUnavailable("Secure random source unavailable") from e
    return tuple(codes)
