"""Tests for the in-memory repository's atomicity guarantees."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from otpgate.errors import AccountExistsError, AccountNotFoundError, ConcurrentMutationConflict
from otpgate.models import Account, TwoFactorState
from otpgate.repository import InMemoryAccountRepository, find_recovery_code


def _enabled(repo: InMemoryAccountRepository, codes: tuple[str, ...]) -> Account:
    account = repo.add(Account(email="ivan@example.com"))
    return repo.update(
        account.model_copy(
            update={
                "two_factor_state": TwoFactorState.ENABLED,
                "secret": "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ",
                "recovery_codes": codes,
            }
        ),
        account.version,
    )


def test_lookup_by_id_and_email():
    repo = InMemoryAccountRepository()
    account = repo.add(Account(email="Ivan@Example.com"))
    assert repo.get(account.id) == account
    assert repo.get_by_email("IVAN@example.com ") == account
    assert repo.get("nope") is None
    assert repo.get_by_email("nope@example.com") is None


def test_add_duplicate_email():
    repo = InMemoryAccountRepository()
    repo.add(Account(email="ivan@example.com"))
    with pytest.raises(AccountExistsError):
        repo.add(Account(email="ivan@example.com"))


def test_update_bumps_version_and_checks_it():
    repo = InMemoryAccountRepository()
    account = repo.add(Account(email="ivan@example.com"))
    stored = repo.update(account.model_copy(update={"secret": "AAAA"}), expected_version=0)
    assert stored.version == 1
    with pytest.raises(ConcurrentMutationConflict):
        repo.update(account.model_copy(update={"secret": "BBBB"}), expected_version=0)
    assert repo.get(account.id).secret == "AAAA"


def test_update_missing_account():
    repo = InMemoryAccountRepository()
    with pytest.raises(AccountNotFoundError):
        repo.update(Account(email="ghost@example.com"), expected_version=0)


def test_consume_removes_once():
    repo = InMemoryAccountRepository()
    account = _enabled(repo, ("AAAA1111", "BBBB2222"))
    assert repo.consume_recovery_code(account.id, "bbbb2222") == 1
    assert repo.consume_recovery_code(account.id, "BBBB2222") is None
    assert repo.get(account.id).recovery_codes == ("AAAA1111",)


def test_consume_bumps_version():
    repo = InMemoryAccountRepository()
    account = _enabled(repo, ("AAAA1111",))
    repo.consume_recovery_code(account.id, "AAAA1111")
    with pytest.raises(ConcurrentMutationConflict):
        repo.update(account, account.version)


def test_concurrent_consumption_single_winner():
    repo = InMemoryAccountRepository()
    account = _enabled(repo, ("AAAA1111", "BBBB2222"))
    workers = 16
    barrier = threading.Barrier(workers)

    def attempt(_):
        barrier.wait()
        return repo.consume_recovery_code(account.id, "AAAA1111")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(workers)))

    assert [r for r in results if r is not None] == [1]
    assert repo.get(account.id).recovery_codes == ("BBBB2222",)


def test_find_recovery_code():
    codes = ("AAAA1111", "BBBB2222")
    assert find_recovery_code(codes, "bbbb2222") == 1
    assert find_recovery_code(codes, "CCCC3333") is None
    assert find_recovery_code((), "AAAA1111") is None
