"""Sealing TOTP secrets at rest with AES-256-GCM.

Each sealed secret is bound to its account id through the GCM associated
data, so a ciphertext copied onto another row fails authentication instead
of silently handing that account someone else's second factor.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from otpgate.config import settings

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_KEY_SIZE = 32


def encryption_enabled() -> bool:
    return bool(settings.master_key)


def _cipher() -> AESGCM:
    raw = settings.master_key
    if not raw:
        raise RuntimeError("OTPGATE_MASTER_KEY not set")
    try:
        key = base64.b64decode(raw, validate=True)
    except binascii.Error as e:
        raise ValueError("OTPGATE_MASTER_KEY is not valid base64") from e
    if len(key) != _KEY_SIZE:
        raise ValueError(f"OTPGATE_MASTER_KEY must be {_KEY_SIZE} bytes (base64-encoded), got {len(key)}")
    return AESGCM(key)


def encrypt(plaintext: str, aad: str) -> str:
    """Seal ``plaintext`` for the record identified by ``aad``.

    Returns base64(nonce + ciphertext + tag).
    """
    nonce = os.urandom(_NONCE_SIZE)
    sealed = _cipher().encrypt(nonce, plaintext.encode(), aad.encode())
    return base64.b64encode(nonce + sealed).decode()


def decrypt(token: str, aad: str) -> str:
    """Open a token made by encrypt(); ``aad`` must be the same record id.

    Raises cryptography's InvalidTag on a wrong key, wrong id or tampering.
    """
    raw = base64.b64decode(token)
    if len(raw) <= _NONCE_SIZE:
        raise ValueError("Sealed secret is truncated")
    return _cipher().decrypt(raw[:_NONCE_SIZE], raw[_NONCE_SIZE:], aad.encode()).decode()
