from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2

from domain.errors import (
    AccountNotFound,
    AlreadyLinked,
    CodeNotFound,
    DuplicateEmail,
    DuplicateUsername,
    StoreUnavailable,
)
from domain.link_codes import generate_link_code
from domain.models import Account
from domain.repositories import AccountRepository

_COLUMNS = (
    "id, username, email, password_hash, link_code, discord_id, "
    "is_banned, ban_reason, created_at"
)

_INSERT_RETRIES = 5


def _constraint_name(exc: psycopg2.IntegrityError) -> str:
    diag = getattr(exc, "diag", None)
    return getattr(diag, "constraint_name", None) or ""


class PostgresAccountRepository(AccountRepository):
    """
    Postgres-backed implementation of `AccountRepository`.

    Uniqueness is enforced by indexes:
      - ux_accounts_username / ux_accounts_email on lower(...)
      - ux_accounts_link_code / ux_accounts_discord_id, partial
        (only rows where the column is set)

    Every connection carries `connect_timeout` and `statement_timeout`
    so a stuck database surfaces as `StoreUnavailable` instead of hanging.
    """

    def __init__(self, dsn: str, timeout: float = 5.0) -> None:
        self._dsn = dsn
        self._timeout = timeout
        self._ensure_table()

    @contextmanager
    def _connection(self) -> Iterator["psycopg2.extensions.connection"]:
        try:
            conn = psycopg2.connect(
                self._dsn,
                connect_timeout=max(1, int(self._timeout)),
                options=f"-c statement_timeout={int(self._timeout * 1000)}",
            )
        except psycopg2.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        try:
            with conn:
                yield conn
        except psycopg2.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS accounts (
                        id TEXT PRIMARY KEY,
                        username TEXT NOT NULL,
                        email TEXT NOT NULL,
                        password_hash TEXT NOT NULL,
                        link_code TEXT,
                        discord_id TEXT,
                        is_banned BOOLEAN NOT NULL DEFAULT FALSE,
                        ban_reason TEXT,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                cur.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_username "
                    "ON accounts (lower(username))"
                )
                cur.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_email "
                    "ON accounts (lower(email))"
                )
                cur.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_link_code "
                    "ON accounts (link_code) WHERE link_code IS NOT NULL"
                )
                cur.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_discord_id "
                    "ON accounts (discord_id) WHERE discord_id IS NOT NULL"
                )

    @staticmethod
    def _to_domain(row: tuple) -> Account:
        return Account(
            id=str(row[0]),
            username=row[1],
            email=row[2],
            password_hash=row[3],
            link_code=row[4],
            discord_id=row[5],
            is_banned=bool(row[6]),
            ban_reason=row[7],
            created_at=row[8],
        )

    def _fetch_one(self, cur, where: str, params: tuple) -> Optional[Account]:
        cur.execute(f"SELECT {_COLUMNS} FROM accounts WHERE {where}", params)
        row = cur.fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def _require(self, cur, account_id: str) -> Account:
        account = self._fetch_one(cur, "id = %s", (account_id,))
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def create_account(
        self,
        username: str,
        email: str,
        password_hash: str,
    ) -> Account:
        for _ in range(_INSERT_RETRIES):
            link_code = generate_link_code(self.link_code_exists)
            try:
                with self._connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute(
                            f"""
                            INSERT INTO accounts (id, username, email, password_hash, link_code)
                            VALUES (%s, %s, %s, %s, %s)
                            RETURNING {_COLUMNS}
                            """,
                            (
                                uuid.uuid4().hex,
                                username.strip(),
                                email.strip().lower(),
                                password_hash,
                                link_code,
                            ),
                        )
                        return self._to_domain(cur.fetchone())
            except psycopg2.IntegrityError as exc:
                constraint = _constraint_name(exc)
                if constraint == "ux_accounts_username":
                    raise DuplicateUsername(username) from exc
                if constraint == "ux_accounts_email":
                    raise DuplicateEmail(email) from exc
                if constraint != "ux_accounts_link_code":
                    raise StoreUnavailable(str(exc)) from exc
        raise StoreUnavailable("Could not store a unique link code.")

    def get_by_id(self, account_id: str) -> Optional[Account]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                return self._fetch_one(cur, "id = %s", (account_id,))

    def find_by_credential(self, identifier: str) -> Optional[Account]:
        value = identifier.strip().lower()
        with self._connection() as conn:
            with conn.cursor() as cur:
                return self._fetch_one(
                    cur,
                    "lower(username) = %s OR lower(email) = %s",
                    (value, value),
                )

    def find_by_link_code(self, code: str) -> Optional[Account]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                return self._fetch_one(cur, "link_code = %s", (code,))

    def find_by_discord_id(self, discord_id: str) -> Optional[Account]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                return self._fetch_one(cur, "discord_id = %s", (str(discord_id),))

    def link_code_exists(self, code: str) -> bool:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM accounts WHERE link_code = %s", (code,))
                return cur.fetchone() is not None

    def consume_link_code(
        self,
        account_id: str,
        code: str,
        discord_id: str,
    ) -> Account:
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        UPDATE accounts
                        SET discord_id = %s, link_code = NULL
                        WHERE id = %s AND link_code = %s AND discord_id IS NULL
                        RETURNING {_COLUMNS}
                        """,
                        (str(discord_id), account_id, code),
                    )
                    row = cur.fetchone()
                    if row:
                        return self._to_domain(row)
                    current = self._require(cur, account_id)
        except psycopg2.IntegrityError as exc:
            raise AlreadyLinked(discord_id) from exc

        if current.discord_id is not None:
            raise AlreadyLinked(current.discord_id)
        raise CodeNotFound(code)

    def replace_link_code(self, account_id: str) -> Account:
        for _ in range(_INSERT_RETRIES):
            code = generate_link_code(self.link_code_exists)
            try:
                with self._connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute(
                            """
                            UPDATE accounts SET link_code = %s
                            WHERE id = %s AND discord_id IS NULL
                            """,
                            (code, account_id),
                        )
                        account = self._require(cur, account_id)
            except psycopg2.IntegrityError:
                continue
            if account.discord_id is not None:
                raise AlreadyLinked(account.discord_id)
            return account
        raise StoreUnavailable("Could not store a unique link code.")

    def set_banned(self, account_id: str, reason: str) -> Account:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE accounts SET is_banned = TRUE, ban_reason = %s
                    WHERE id = %s AND NOT is_banned
                    """,
                    (reason, account_id),
                )
                return self._require(cur, account_id)

    def update_ban_reason(self, account_id: str, reason: str) -> Account:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE accounts SET ban_reason = %s WHERE id = %s AND is_banned",
                    (reason, account_id),
                )
                return self._require(cur, account_id)

    def update_password_hash(self, account_id: str, password_hash: str) -> Account:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE accounts SET password_hash = %s WHERE id = %s",
                    (password_hash, account_id),
                )
                return self._require(cur, account_id)
