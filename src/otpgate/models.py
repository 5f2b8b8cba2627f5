"""Pydantic models for accounts and verification results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TwoFactorState(StrEnum):
    DISABLED = "disabled"
    PENDING_SETUP = "pending_setup"
    ENABLED = "enabled"


class VerifyOutcome(StrEnum):
    SUCCESS = "success"
    RECOVERY_USED = "recovery_used"
    FAILURE = "failure"


class AttemptKind(StrEnum):
    CONFIRM_SETUP = "confirm_setup"
    VERIFY = "verify"
    DISABLE = "disable"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Account(BaseModel):
    """A user account as held by the repository.

    Instances are immutable; writers build a copy with ``model_copy`` and hand
    it back together with the version they read.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    email: str
    two_factor_state: TwoFactorState = TwoFactorState.DISABLED
    secret: str | None = None
    recovery_codes: tuple[str, ...] = ()
    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def two_factor_enabled(self) -> bool:
        return self.two_factor_state == TwoFactorState.ENABLED


class PendingSetup(BaseModel):
    """Candidate credentials handed out by ``begin_setup``.

    Nothing here is bound to the account until ``confirm_setup`` succeeds.
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    secret: str
    provisioning_uri: str
    recovery_codes: tuple[str, ...]
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def state(self) -> TwoFactorState:
        return TwoFactorState.PENDING_SETUP


class VerificationResult(BaseModel):
    """Outcome of one code check; enough for an external rate limiter to act on."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    kind: AttemptKind
    outcome: VerifyOutcome
    at: datetime
    drift: int | None = None  # matched window offset, in periods
    recovery_codes_remaining: int | None = None

    @property
    def ok(self) -> bool:
        return self.outcome != VerifyOutcome.FAILURE

    @property
    def recovery_exhausted(self) -> bool:
        return self.recovery_codes_remaining == 0


@dataclass(frozen=True)
class Session:
    """Who is logged in on this request. Passed explicitly, never global."""

    account_id: str | None = None
    email: str | None = None
    authenticated: bool = False
    requires_two_factor: bool = False

    @classmethod
    def anonymous(cls) -> Session:
        return cls()
