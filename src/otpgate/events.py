"""Attempt events for rate limiters, lockout policies and audit logs.

Every confirm/verify/disable attempt calls emit(). Consumers register a
listener; otpgate itself never throttles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from otpgate.models import VerificationResult, VerifyOutcome

logger = logging.getLogger(__name__)

Listener = Callable[[VerificationResult], None]


class AttemptEmitter:
    def __init__(self, listeners: list[Listener] | None = None) -> None:
        self._listeners: list[Listener] = list(listeners or [])

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def emit(self, result: VerificationResult) -> None:
        """Log the attempt and hand it to every listener.

        A listener that raises propagates to the caller; a limiter that cannot
        record an attempt should fail the request rather than let it through.
        Results are emitted after any storage write, so the write stands: a
        recovery code is already spent when a listener sees RECOVERY_USED.
        """
        if result.outcome == VerifyOutcome.FAILURE:
            logger.warning("[attempt] %s %s account=%s", result.kind, result.outcome, result.account_id)
        else:
            logger.info(
                "[attempt] %s %s account=%s drift=%s",
                result.kind,
                result.outcome,
                result.account_id,
                result.drift,
            )
        for listener in list(self._listeners):
            listener(result)
