from __future__ import annotations

import pytest

from otpgate import base32
from otpgate.clock import FixedClock
from otpgate.config import Settings
from otpgate.models import PendingSetup
from otpgate.repository import InMemoryAccountRepository
from otpgate.service import AccountService, TwoFactorService
from otpgate.totp import compute_code

# RFC 6238 SHA-1 seed, base32
RFC_SECRET = base32.encode(b"12345678901234567890")
NOW = 1_700_000_000
RECOVERY = ("AAAA1111", "BBBB2222", "CCCC3333")


def code_at(secret: str, t: float) -> str:
    return compute_code(base32.decode(secret), t)


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def repo() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def attempts() -> list:
    return []


@pytest.fixture
def two_factor(repo, clock, config, attempts) -> TwoFactorService:
    return TwoFactorService(repo, clock=clock, config=config, listeners=[attempts.append])


@pytest.fixture
def accounts(repo, two_factor) -> AccountService:
    return AccountService(repo, two_factor)


@pytest.fixture
def enrolled(accounts, two_factor, repo):
    """An account with 2FA enabled on RFC_SECRET and the RECOVERY codes."""
    account = accounts.register("alice@example.com")
    pending = PendingSetup(
        account_id=account.id,
        secret=RFC_SECRET,
        provisioning_uri="otpauth://totp/test:alice",
        recovery_codes=RECOVERY,
    )
    result = two_factor.confirm_setup(pending, code_at(RFC_SECRET, NOW))
    assert result.ok
    return repo.get(account.id)
