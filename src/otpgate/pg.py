"""PostgreSQL-backed account repository (psycopg 3, sync).

Each call opens its own connection, so the repository is safe to share
across threads. Atomicity comes from single conditional UPDATE statements.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg
import psycopg.rows
from cryptography.exceptions import InvalidTag

from otpgate import crypto
from otpgate.config import settings
from otpgate.errors import AccountExistsError, AccountNotFoundError, ConcurrentMutationConflict, StoredDataError
from otpgate.generator import normalize_recovery_code
from otpgate.models import Account

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS otp_accounts (
    id               TEXT PRIMARY KEY,
    email            TEXT NOT NULL UNIQUE,
    two_factor_state TEXT NOT NULL DEFAULT 'disabled',
    secret           TEXT,
    secret_encrypted BOOLEAN NOT NULL DEFAULT false,
    recovery_codes   TEXT[] NOT NULL DEFAULT '{}',
    version          INTEGER NOT NULL DEFAULT 0,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_COLUMNS = "id, email, two_factor_state, secret, secret_encrypted, recovery_codes, version, created_at, updated_at"


class PostgresAccountRepository:
    def __init__(self, conninfo: str | None = None) -> None:
        self.conninfo = conninfo or settings.database_url

    def _conn(self) -> psycopg.Connection[dict[str, Any]]:
        return psycopg.connect(self.conninfo, row_factory=psycopg.rows.dict_row)

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone() if cur.description is not None else None
            conn.commit()
        return row

    def ensure_schema(self) -> None:
        with self._conn() as conn:
            conn.execute(SCHEMA)
            conn.commit()
        logger.info("otp_accounts schema ready")

    # -- row mapping --

    def _seal(self, account: Account) -> tuple[str | None, bool]:
        secret = account.secret
        if secret is None or not crypto.encryption_enabled():
            return secret, False
        return crypto.encrypt(secret, aad=account.id), True

    def _to_account(self, row: dict[str, Any]) -> Account:
        secret = row["secret"]
        if secret is not None and row["secret_encrypted"]:
            try:
                secret = crypto.decrypt(secret, aad=row["id"])
            except (InvalidTag, RuntimeError, ValueError) as e:
                raise StoredDataError(f"Cannot decrypt secret for account {row['id']}") from e
        return Account(
            id=row["id"],
            email=row["email"],
            two_factor_state=row["two_factor_state"],
            secret=secret,
            recovery_codes=tuple(row["recovery_codes"] or ()),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -- AccountRepository --

    def get(self, account_id: str) -> Account | None:
        row = self._fetch_one(f"SELECT {_COLUMNS} FROM otp_accounts WHERE id = %s", (account_id,))
        return self._to_account(row) if row else None

    def get_by_email(self, email: str) -> Account | None:
        row = self._fetch_one(
            f"SELECT {_COLUMNS} FROM otp_accounts WHERE email = %s",
            (email.strip().lower(),),
        )
        return self._to_account(row) if row else None

    def add(self, account: Account) -> Account:
        secret, sealed = self._seal(account)
        try:
            row = self._fetch_one(
                f"""INSERT INTO otp_accounts
                    (id, email, two_factor_state, secret, secret_encrypted, recovery_codes,
                     version, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}""",
                (
                    account.id,
                    account.email,
                    account.two_factor_state.value,
                    secret,
                    sealed,
                    list(account.recovery_codes),
                    account.version,
                    account.created_at,
                    account.updated_at,
                ),
            )
        except psycopg.errors.UniqueViolation as e:
            raise AccountExistsError(f"Email already registered: {account.email}") from e
        if row is None:
            raise StoredDataError(f"Insert of account {account.id} returned no row")
        return self._to_account(row)

    def update(self, account: Account, expected_version: int) -> Account:
        secret, sealed = self._seal(account)
        row = self._fetch_one(
            f"""UPDATE otp_accounts
                SET email = %s, two_factor_state = %s, secret = %s, secret_encrypted = %s,
                    recovery_codes = %s, version = version + 1, updated_at = now()
                WHERE id = %s AND version = %s
                RETURNING {_COLUMNS}""",
            (
                account.email,
                account.two_factor_state.value,
                secret,
                sealed,
                list(account.recovery_codes),
                account.id,
                expected_version,
            ),
        )
        if row is None:
            if self.get(account.id) is None:
                raise AccountNotFoundError(account.id)
            raise ConcurrentMutationConflict(account.id, expected_version)
        return self._to_account(row)

    def consume_recovery_code(self, account_id: str, code: str) -> int | None:
        wanted = normalize_recovery_code(code)
        row = self._fetch_one(
            """UPDATE otp_accounts
               SET recovery_codes = array_remove(recovery_codes, %s),
                   version = version + 1, updated_at = now()
               WHERE id = %s AND %s = ANY(recovery_codes)
               RETURNING cardinality(recovery_codes) AS remaining""",
            (wanted, account_id, wanted),
        )
        if row is not None:
            return row["remaining"]
        if self.get(account_id) is None:
            raise AccountNotFoundError(account_id)
        return None
