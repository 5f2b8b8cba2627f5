"""Tests for data models, clocks and attempt events."""

from __future__ import annotations

from datetime import UTC, datetime

import pydantic
import pytest

from otpgate.clock import FixedClock, SystemClock
from otpgate.events import AttemptEmitter
from otpgate.models import (
    Account,
    AttemptKind,
    Session,
    TwoFactorState,
    VerificationResult,
    VerifyOutcome,
)


def _result(outcome: VerifyOutcome, remaining: int | None = None) -> VerificationResult:
    return VerificationResult(
        account_id="a1",
        kind=AttemptKind.VERIFY,
        outcome=outcome,
        at=datetime(2024, 1, 1, tzinfo=UTC),
        recovery_codes_remaining=remaining,
    )


def test_account_defaults():
    account = Account(email="Judy@Example.com")
    assert account.email == "judy@example.com"
    assert account.two_factor_state == TwoFactorState.DISABLED
    assert account.secret is None
    assert account.recovery_codes == ()
    assert account.version == 0
    assert not account.two_factor_enabled
    assert len(account.id) == 36


def test_account_is_immutable():
    account = Account(email="judy@example.com")
    with pytest.raises(pydantic.ValidationError):
        account.secret = "AAAA"  # type: ignore[misc]


def test_result_flags():
    assert _result(VerifyOutcome.SUCCESS).ok
    assert not _result(VerifyOutcome.FAILURE).ok
    assert _result(VerifyOutcome.RECOVERY_USED, remaining=0).recovery_exhausted
    assert not _result(VerifyOutcome.RECOVERY_USED, remaining=3).recovery_exhausted
    assert _result(VerifyOutcome.FAILURE, remaining=0).recovery_exhausted
    assert not _result(VerifyOutcome.FAILURE).recovery_exhausted


def test_session_anonymous():
    session = Session.anonymous()
    assert session.account_id is None
    assert not session.authenticated
    assert not session.requires_two_factor


def test_all_enums_complete():
    assert len(TwoFactorState) == 3
    assert len(VerifyOutcome) == 3
    assert len(AttemptKind) == 3


def test_fixed_clock():
    clock = FixedClock(datetime(2023, 11, 14, 22, 13, 20))
    assert clock.now() == 1_700_000_000
    clock.advance(30)
    assert clock.now() == 1_700_000_030


def test_system_clock_reads_time():
    assert SystemClock().now() > 1_600_000_000


def test_emitter_calls_listeners_in_order():
    seen: list[str] = []
    emitter = AttemptEmitter([lambda r: seen.append("first")])

    def second(r):
        seen.append("second")

    emitter.subscribe(second)
    emitter.emit(_result(VerifyOutcome.SUCCESS))
    emitter.unsubscribe(second)
    emitter.emit(_result(VerifyOutcome.FAILURE))
    assert seen == ["first", "second", "first"]


def test_emitter_logs_failures(caplog):
    with caplog.at_level("WARNING", logger="otpgate.events"):
        AttemptEmitter().emit(_result(VerifyOutcome.FAILURE))
    assert "[attempt] verify failure account=a1" in caplog.text
