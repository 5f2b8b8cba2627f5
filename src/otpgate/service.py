"""Two-factor lifecycle: setup, confirmation, login verification, disable.

State lives in the injected repository; the services themselves keep
nothing per account, so one instance can serve many threads.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from otpgate import base32
from otpgate.clock import Clock, SystemClock
from otpgate.config import Settings, settings
from otpgate.errors import AccountExistsError, AccountNotFoundError, InvalidSecretEncoding, StoredDataError
from otpgate.events import AttemptEmitter, Listener
from otpgate.generator import generate_recovery_codes, generate_secret, normalize_recovery_code
from otpgate.models import (
    Account,
    AttemptKind,
    PendingSetup,
    Session,
    TwoFactorState,
    VerificationResult,
    VerifyOutcome,
)
from otpgate.repository import AccountRepository
from otpgate.totp import Instant, epoch_seconds, match_window, provisioning_uri

logger = logging.getLogger(__name__)


class TwoFactorService:
    def __init__(
        self,
        repository: AccountRepository,
        clock: Clock | None = None,
        config: Settings | None = None,
        listeners: list[Listener] | None = None,
    ) -> None:
        self.repository = repository
        self.clock = clock or SystemClock()
        self.config = config or settings
        self.events = AttemptEmitter(listeners)

    # -- helpers --

    def _now(self, now: Instant | None) -> datetime:
        seconds = self.clock.now() if now is None else epoch_seconds(now)
        return datetime.fromtimestamp(seconds, UTC)

    def _require(self, account_id: str) -> Account:
        account = self.repository.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _stored_secret(self, account: Account) -> bytes:
        if account.secret is None:
            raise StoredDataError(f"Account {account.id} has 2FA enabled but no secret")
        try:
            return base32.decode_secret(account.secret)
        except InvalidSecretEncoding as e:
            raise StoredDataError(f"Account {account.id} has a malformed secret") from e

    def _match(self, secret: bytes, code: str, at: datetime, behind: int, ahead: int) -> int | None:
        cfg = self.config
        return match_window(
            secret,
            code,
            at,
            behind=behind,
            ahead=ahead,
            period=cfg.period,
            digits=cfg.digits,
            algorithm=cfg.algorithm,
        )

    def _report(
        self,
        account_id: str,
        kind: AttemptKind,
        outcome: VerifyOutcome,
        at: datetime,
        drift: int | None = None,
        remaining: int | None = None,
    ) -> VerificationResult:
        result = VerificationResult(
            account_id=account_id,
            kind=kind,
            outcome=outcome,
            at=at,
            drift=drift,
            recovery_codes_remaining=remaining,
        )
        self.events.emit(result)
        return result

    # -- lifecycle --

    def begin_setup(self, account_id: str) -> PendingSetup:
        """Mint a candidate secret and recovery set for ``account_id``.

        Nothing is stored. An account that already has 2FA keeps its current
        secret until ``confirm_setup`` succeeds with the new one.
        """
        cfg = self.config
        account = self._require(account_id)
        secret = generate_secret(cfg.secret_bytes)
        codes = generate_recovery_codes(cfg.recovery_code_count, cfg.recovery_code_length)
        uri = provisioning_uri(
            secret,
            account.email,
            cfg.issuer,
            algorithm=cfg.algorithm,
            digits=cfg.digits,
            period=cfg.period,
        )
        logger.info("Began 2FA setup for account %s", account_id)
        return PendingSetup(
            account_id=account_id,
            secret=secret,
            provisioning_uri=uri,
            recovery_codes=codes,
        )

    def confirm_setup(
        self, pending: PendingSetup, submitted_code: str, now: Instant | None = None
    ) -> VerificationResult:
        """Activate ``pending`` if ``submitted_code`` is from the current or previous window.

        On a wrong code the candidate is simply dropped; the stored account is
        untouched. The new secret and recovery set replace whatever is stored,
        so the write is checked only against the version read here. Raises
        ConcurrentMutationConflict if another write lands in between; calling
        again with the same ``pending`` is safe.
        """
        at = self._now(now)
        secret = base32.decode_secret(pending.secret)
        drift = self._match(secret, submitted_code, at, behind=self.config.setup_window_behind, ahead=0)
        if drift is None:
            return self._report(pending.account_id, AttemptKind.CONFIRM_SETUP, VerifyOutcome.FAILURE, at)

        account = self._require(pending.account_id)
        enabled = account.model_copy(
            update={
                "two_factor_state": TwoFactorState.ENABLED,
                "secret": pending.secret,
                "recovery_codes": pending.recovery_codes,
            }
        )
        self.repository.update(enabled, account.version)
        logger.info("2FA enabled for account %s", pending.account_id)
        return self._report(
            pending.account_id,
            AttemptKind.CONFIRM_SETUP,
            VerifyOutcome.SUCCESS,
            at,
            drift=drift,
            remaining=len(pending.recovery_codes),
        )

    def verify(
        self,
        account_id: str,
        submitted_code: str,
        now: Instant | None = None,
        window_radius: int | None = None,
    ) -> VerificationResult:
        """Check a login code, falling back to the recovery set.

        A time-window match never touches storage. Otherwise a matching
        recovery code is removed in one atomic repository call. The removal
        happens before listeners run, so a listener that raises still leaves
        the code spent.

        Failures on an enabled account report how many recovery codes are
        left, so an exhausted account is visible on every attempt.
        """
        at = self._now(now)
        radius = self.config.window_radius if window_radius is None else window_radius
        if radius < 0:
            raise ValueError("window_radius must be >= 0")
        account = self._require(account_id)
        if not account.two_factor_enabled:
            return self._report(account_id, AttemptKind.VERIFY, VerifyOutcome.FAILURE, at)

        drift = self._match(self._stored_secret(account), submitted_code, at, behind=radius, ahead=radius)
        if drift is not None:
            return self._report(account_id, AttemptKind.VERIFY, VerifyOutcome.SUCCESS, at, drift=drift)

        if normalize_recovery_code(submitted_code):
            remaining = self.repository.consume_recovery_code(account_id, submitted_code)
            if remaining is not None:
                if remaining == 0:
                    logger.warning("Account %s used its last recovery code; re-enrollment needed", account_id)
                return self._report(
                    account_id, AttemptKind.VERIFY, VerifyOutcome.RECOVERY_USED, at, remaining=remaining
                )

        return self._report(
            account_id, AttemptKind.VERIFY, VerifyOutcome.FAILURE, at, remaining=len(account.recovery_codes)
        )

    def disable(self, account_id: str, submitted_code: str, now: Instant | None = None) -> VerificationResult:
        """Turn 2FA off. Only a live TOTP code is accepted, never a recovery code."""
        at = self._now(now)
        radius = self.config.window_radius
        account = self._require(account_id)
        if not account.two_factor_enabled:
            return self._report(account_id, AttemptKind.DISABLE, VerifyOutcome.FAILURE, at)

        drift = self._match(self._stored_secret(account), submitted_code, at, behind=radius, ahead=radius)
        if drift is None:
            return self._report(account_id, AttemptKind.DISABLE, VerifyOutcome.FAILURE, at)

        disabled = account.model_copy(
            update={
                "two_factor_state": TwoFactorState.DISABLED,
                "secret": None,
                "recovery_codes": (),
            }
        )
        self.repository.update(disabled, account.version)
        logger.info("2FA disabled for account %s", account_id)
        return self._report(account_id, AttemptKind.DISABLE, VerifyOutcome.SUCCESS, at, drift=drift)

    def recovery_codes_remaining(self, account_id: str) -> int:
        return len(self._require(account_id).recovery_codes)


class AccountService:
    """Registration and the two-step login built on TwoFactorService."""

    def __init__(self, repository: AccountRepository, two_factor: TwoFactorService) -> None:
        self.repository = repository
        self.two_factor = two_factor

    def register(self, email: str) -> Account:
        account = Account(email=email)
        if self.repository.get_by_email(account.email) is not None:
            raise AccountExistsError(f"Email already registered: {account.email}")
        return self.repository.add(account)

    def start_login(self, email: str) -> Session:
        account = self.repository.get_by_email(email)
        if account is None:
            raise AccountNotFoundError(email)
        if account.two_factor_enabled:
            return Session(account_id=account.id, email=account.email, requires_two_factor=True)
        return Session(account_id=account.id, email=account.email, authenticated=True)

    def complete_login(
        self, session: Session, code: str, now: Instant | None = None
    ) -> tuple[Session, VerificationResult]:
        if not session.requires_two_factor or session.account_id is None:
            raise ValueError("Session is not waiting for a second factor")
        result = self.two_factor.verify(session.account_id, code, now=now)
        if not result.ok:
            return session, result
        return Session(account_id=session.account_id, email=session.email, authenticated=True), result

    def logout(self, session: Session) -> Session:
        if session.account_id:
            logger.info("Account %s logged out", session.account_id)
        return Session.anonymous()
