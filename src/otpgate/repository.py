"""Account repository capability and an in-process implementation.

The state machine only talks to storage through ``AccountRepository``.
Backends must make ``update`` a compare-and-set on ``version`` and
``consume_recovery_code`` a single check-and-remove step.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Protocol

from otpgate.errors import AccountExistsError, AccountNotFoundError, ConcurrentMutationConflict
from otpgate.generator import normalize_recovery_code
from otpgate.mac import strings_equal
from otpgate.models import Account

logger = logging.getLogger(__name__)


class AccountRepository(Protocol):
    def get(self, account_id: str) -> Account | None: ...

    def get_by_email(self, email: str) -> Account | None: ...

    def add(self, account: Account) -> Account: ...

    def update(self, account: Account, expected_version: int) -> Account:
        """Store ``account`` if the stored version is still ``expected_version``.

        Returns the stored copy with its bumped version. Raises
        ConcurrentMutationConflict otherwise.
        """
        ...

    def consume_recovery_code(self, account_id: str, code: str) -> int | None:
        """Remove ``code`` if present. Returns the count left, or None if absent."""
        ...


def find_recovery_code(codes: tuple[str, ...], code: str) -> int | None:
    """Index of ``code`` in ``codes``, comparing every entry in constant time."""
    wanted = normalize_recovery_code(code)
    found = None
    for i, candidate in enumerate(codes):
        if strings_equal(candidate, wanted) and found is None:
            found = i
    return found


class InMemoryAccountRepository:
    """Thread-safe dict-backed repository with one lock per account."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._by_email: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            return lock

    def get(self, account_id: str) -> Account | None:
        return self._accounts.get(account_id)

    def get_by_email(self, email: str) -> Account | None:
        account_id = self._by_email.get(email.strip().lower())
        return self._accounts.get(account_id) if account_id else None

    def add(self, account: Account) -> Account:
        with self._registry_lock:
            if account.email in self._by_email:
                raise AccountExistsError(f"Email already registered: {account.email}")
            if account.id in self._accounts:
                raise AccountExistsError(f"Account id already in use: {account.id}")
            self._accounts[account.id] = account
            self._by_email[account.email] = account.id
        logger.debug("Added account %s", account.id)
        return account

    def update(self, account: Account, expected_version: int) -> Account:
        with self._lock_for(account.id):
            current = self._accounts.get(account.id)
            if current is None:
                raise AccountNotFoundError(account.id)
            if current.version != expected_version:
                raise ConcurrentMutationConflict(account.id, expected_version)
            stored = account.model_copy(
                update={"version": expected_version + 1, "updated_at": datetime.now(UTC)}
            )
            self._accounts[account.id] = stored
            return stored

    def consume_recovery_code(self, account_id: str, code: str) -> int | None:
        with self._lock_for(account_id):
            current = self._accounts.get(account_id)
            if current is None:
                raise AccountNotFoundError(account_id)
            index = find_recovery_code(current.recovery_codes, code)
            if index is None:
                return None
            remaining = current.recovery_codes[:index] + current.recovery_codes[index + 1 :]
            self._accounts[account_id] = current.model_copy(
                update={
                    "recovery_codes": remaining,
                    "version": current.version + 1,
                    "updated_at": datetime.now(UTC),
                }
            )
            return len(remaining)
