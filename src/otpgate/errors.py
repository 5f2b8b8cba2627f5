"""Exception hierarchy.

Wrong codes and spent recovery codes are ordinary results (see
``otpgate.models.VerificationResult``); only conditions the caller cannot
treat as a normal "no" are raised.
"""

from __future__ import annotations


class OtpGateError(Exception):
    """Base class for all otpgate errors."""


class InvalidSecretEncoding(OtpGateError, ValueError):
    """A secret could not be decoded from base32."""


class ClockUnavailable(OtpGateError):
    """The wall-clock source failed or returned an unusable value."""


class EntropyUnavailable(OtpGateError):
    """The operating system's secure random source is unavailable."""


class ConcurrentMutationConflict(OtpGateError):
    """Another writer changed the account first. Reload and retry."""

    def __init__(self, account_id: str, expected_version: int | None = None) -> None:
        self.account_id = account_id
        self.expected_version = expected_version
        msg = f"Account {account_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version})"
        super().__init__(msg)


class AccountNotFoundError(OtpGateError, LookupError):
    """No account with the given id or email."""


class AccountExistsError(OtpGateError):
    """An account with this email is already registered."""


class StoredDataError(OtpGateError):
    """Persisted account data is inconsistent or cannot be decrypted."""
