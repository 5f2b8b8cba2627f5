"""HOTP/TOTP code derivation (RFC 4226 / RFC 6238) and otpauth URIs."""

from __future__ import annotations

import math
import struct
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from re import split
from urllib.parse import parse_qsl, quote, unquote, urlparse

from otpgate.mac import HashAlgorithm, hmac_digest, strings_equal

DEFAULT_PERIOD = 30
DEFAULT_DIGITS = 6

# Characters encodeURIComponent leaves alone; authenticator apps expect the
# same label bytes a browser would produce.
_URI_SAFE = "!~*'()"

Instant = datetime | int | float


def epoch_seconds(at: Instant) -> float:
    """Unix time of ``at``. Naive datetimes are taken as UTC."""
    if isinstance(at, datetime):
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        seconds = at.timestamp()
    else:
        seconds = float(at)
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"time must be a non-negative Unix timestamp, got {seconds!r}")
    return seconds


def timecode(at: Instant, period: int = DEFAULT_PERIOD) -> int:
    """Number of whole periods elapsed since the epoch."""
    if period <= 0:
        raise ValueError("period must be positive")
    return int(epoch_seconds(at) // period)


def seconds_remaining(at: Instant, period: int = DEFAULT_PERIOD) -> int:
    """Seconds left before the window containing ``at`` closes (1..period)."""
    return period - int(epoch_seconds(at)) % period


def hotp(
    secret: bytes,
    counter: int,
    digits: int = DEFAULT_DIGITS,
    algorithm: HashAlgorithm = HashAlgorithm.SHA1,
) -> str:
    """Compute the counter-based code for ``secret``.

    :param secret: raw key bytes (already base32-decoded)
    :param counter: moving factor, packed as 8 bytes big-endian
    :param digits: code length, 6 to 10
    :returns: zero-padded decimal string of exactly ``digits`` characters
    """
    if counter < 0:
        raise ValueError("counter must be a non-negative integer")
    if not 6 <= digits <= 10:
        raise ValueError("digits must be between 6 and 10")

    mac = hmac_digest(secret, struct.pack(">Q", counter), algorithm)
    # dynamic truncation: low nibble of the last byte picks the offset
    offset = mac[-1] & 0x0F
    value = struct.unpack(">I", mac[offset : offset + 4])[0] & 0x7FFFFFFF
    return str(value % 10**digits).zfill(digits)


def compute_code(
    secret: bytes,
    at: Instant,
    period: int = DEFAULT_PERIOD,
    digits: int = DEFAULT_DIGITS,
    algorithm: HashAlgorithm = HashAlgorithm.SHA1,
) -> str:
    """The TOTP code for ``secret`` in the window containing ``at``."""
    return hotp(secret, timecode(at, period), digits=digits, algorithm=algorithm)


def _window_offsets(behind: int, ahead: int) -> list[int]:
    offsets = [0]
    for step in range(1, max(behind, ahead) + 1):
        if step <= behind:
            offsets.append(-step)
        if step <= ahead:
            offsets.append(step)
    return offsets


def match_window(
    secret: bytes,
    code: str,
    at: Instant,
    behind: int,
    ahead: int,
    period: int = DEFAULT_PERIOD,
    digits: int = DEFAULT_DIGITS,
    algorithm: HashAlgorithm = HashAlgorithm.SHA1,
) -> int | None:
    """Find which window around ``at`` produced ``code``.

    Windows are tried nearest first. Returns the offset in periods (negative
    means the code came from the past) or None when nothing matches.
    """
    # fullwidth and other compatibility digits fold to ASCII before the shape check
    candidate = unicodedata.normalize("NFKC", code).strip()
    if len(candidate) != digits or not (candidate.isascii() and candidate.isdigit()):
        return None

    current = timecode(at, period)
    for offset in _window_offsets(behind, ahead):
        counter = current + offset
        if counter < 0:
            continue
        if strings_equal(candidate, hotp(secret, counter, digits=digits, algorithm=algorithm)):
            return offset
    return None


def provisioning_uri(
    secret: str,
    account_label: str,
    issuer: str,
    algorithm: HashAlgorithm = HashAlgorithm.SHA1,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_PERIOD,
) -> str:
    """Build the ``otpauth://totp/...`` URI authenticator apps scan.

    See https://github.com/google/google-authenticator/wiki/Key-Uri-Format
    """
    issuer_q = quote(issuer, safe=_URI_SAFE)
    label_q = quote(account_label, safe=_URI_SAFE)
    return (
        f"otpauth://totp/{issuer_q}:{label_q}"
        f"?secret={secret}&issuer={issuer_q}"
        f"&algorithm={HashAlgorithm(algorithm).value}&digits={digits}&period={period}"
    )


@dataclass(frozen=True)
class ProvisioningInfo:
    secret: str
    account_label: str
    issuer: str | None = None
    algorithm: HashAlgorithm = HashAlgorithm.SHA1
    digits: int = DEFAULT_DIGITS
    period: int = DEFAULT_PERIOD


def parse_provisioning_uri(uri: str) -> ProvisioningInfo:
    """Parse an ``otpauth://totp`` URI back into its parts."""
    parsed = urlparse(uri)
    if parsed.scheme != "otpauth":
        raise ValueError("Not an otpauth URI")
    if parsed.netloc != "totp":
        raise ValueError(f"Unsupported OTP type {parsed.netloc!r}")

    # our own labels escape colons inside issuer/account, so a literal ":" is
    # the separator; other generators sometimes escape the separator itself
    path = parsed.path[1:]
    label_parts = path.split(":", 1) if ":" in path else split("%3A|%3a", path, maxsplit=1)
    issuer: str | None = None
    if len(label_parts) == 1:
        account_label = unquote(label_parts[0])
    else:
        issuer = unquote(label_parts[0])
        account_label = unquote(label_parts[1])

    secret = None
    algorithm = HashAlgorithm.SHA1
    digits = DEFAULT_DIGITS
    period = DEFAULT_PERIOD
    for key, value in parse_qsl(parsed.query):
        if key == "secret":
            secret = value
        elif key == "issuer":
            if issuer is not None and issuer != value:
                raise ValueError("If issuer is specified in both label and parameters, it should be equal.")
            issuer = value
        elif key == "algorithm":
            algorithm = HashAlgorithm.parse(value)
        elif key == "digits":
            digits = int(value)
        elif key == "period":
            period = int(value)

    if not secret:
        raise ValueError("No secret found in URI")
    if not 6 <= digits <= 10:
        raise ValueError("digits must be between 6 and 10")

    return ProvisioningInfo(
        secret=secret,
        account_label=account_label,
        issuer=issuer,
        algorithm=algorithm,
        digits=digits,
        period=period,
    )
