from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from domain.errors import (
    AccountNotFound,
    AlreadyLinked,
    CodeNotFound,
    DuplicateEmail,
    DuplicateUsername,
    StoreUnavailable,
)
from domain.link_codes import generate_link_code
from domain.models import Account, utcnow
from domain.repositories import AccountRepository

_COLUMNS = (
    "id, username, email, password_hash, link_code, discord_id, "
    "is_banned, ban_reason, created_at"
)

# A freshly generated code can still lose a race against a concurrent
# insert; the unique index catches that and we simply draw again.
_INSERT_RETRIES = 5


class SqliteAccountRepository(AccountRepository):
    """
    SQLite-backed implementation of `AccountRepository`.

    Manages the `accounts` table. Usernames and emails are unique under
    `COLLATE NOCASE`; link codes and Discord IDs are unique only where
    they are set (partial indexes), so any number of accounts may have
    them empty.
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._ensure_table()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            # IMMEDIATE: writers take the write lock when the transaction
            # begins, so concurrent conditional updates queue on the busy
            # timeout instead of failing with "database is locked".
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._timeout,
                isolation_level="IMMEDIATE",
            )
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        try:
            with conn:
                yield conn
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL COLLATE NOCASE UNIQUE,
                    email TEXT NOT NULL COLLATE NOCASE UNIQUE,
                    password_hash TEXT NOT NULL,
                    link_code TEXT,
                    discord_id TEXT,
                    is_banned INTEGER NOT NULL DEFAULT 0,
                    ban_reason TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_link_code
                ON accounts (link_code) WHERE link_code IS NOT NULL
                """
            )
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_discord_id
                ON accounts (discord_id) WHERE discord_id IS NOT NULL
                """
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
            created_at=datetime.fromisoformat(row[8]),
        )

    def _fetch_one(
        self,
        conn: sqlite3.Connection,
        where: str,
        params: tuple,
    ) -> Optional[Account]:
        cur = conn.cursor()
        cur.execute(f"SELECT {_COLUMNS} FROM accounts WHERE {where}", params)
        row = cur.fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def _require(self, conn: sqlite3.Connection, account_id: str) -> Account:
        account = self._fetch_one(conn, "id = ?", (account_id,))
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
            account = Account(
                id=uuid.uuid4().hex,
                username=username.strip(),
                email=email.strip().lower(),
                password_hash=password_hash,
                link_code=generate_link_code(self.link_code_exists),
                created_at=utcnow(),
            )
            try:
                with self._connection() as conn:
                    conn.execute(
                        f"""
                        INSERT INTO accounts ({_COLUMNS})
                        VALUES (?, ?, ?, ?, ?, NULL, 0, NULL, ?)
                        """,
                        (
                            account.id,
                            account.username,
                            account.email,
                            account.password_hash,
                            account.link_code,
                            account.created_at.isoformat(),
                        ),
                    )
                return account
            except sqlite3.IntegrityError as exc:
                message = str(exc)
                if "accounts.username" in message:
                    raise DuplicateUsername(username) from exc
                if "accounts.email" in message:
                    raise DuplicateEmail(email) from exc
                if "accounts.link_code" not in message:
                    raise StoreUnavailable(message) from exc
        raise StoreUnavailable("Could not store a unique link code.")

    def get_by_id(self, account_id: str) -> Optional[Account]:
        with self._connection() as conn:
            return self._fetch_one(conn, "id = ?", (account_id,))

    def find_by_credential(self, identifier: str) -> Optional[Account]:
        value = identifier.strip()
        with self._connection() as conn:
            return self._fetch_one(
                conn, "username = ? OR email = ?", (value, value)
            )

    def find_by_link_code(self, code: str) -> Optional[Account]:
        with self._connection() as conn:
            return self._fetch_one(conn, "link_code = ?", (code,))

    def find_by_discord_id(self, discord_id: str) -> Optional[Account]:
        with self._connection() as conn:
            return self._fetch_one(conn, "discord_id = ?", (str(discord_id),))

    def link_code_exists(self, code: str) -> bool:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM accounts WHERE link_code = ?", (code,))
            return cur.fetchone() is not None

    def consume_link_code(
        self,
        account_id: str,
        code: str,
        discord_id: str,
    ) -> Account:
        try:
            with self._connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    """
                    UPDATE accounts
                    SET discord_id = ?, link_code = NULL
                    WHERE id = ? AND link_code = ? AND discord_id IS NULL
                    """,
                    (str(discord_id), account_id, code),
                )
                if cur.rowcount == 1:
                    return self._require(conn, account_id)
                current = self._require(conn, account_id)
        except sqlite3.IntegrityError as exc:
            # Another account already owns this Discord ID.
            raise AlreadyLinked(discord_id) from exc

        if current.discord_id is not None:
            raise AlreadyLinked(current.discord_id)
        raise CodeNotFound(code)

    def replace_link_code(self, account_id: str) -> Account:
        for _ in range(_INSERT_RETRIES):
            code = generate_link_code(self.link_code_exists)
            try:
                with self._connection() as conn:
                    cur = conn.cursor()
                    cur.execute(
                        """
                        UPDATE accounts SET link_code = ?
                        WHERE id = ? AND discord_id IS NULL
                        """,
                        (code, account_id),
                    )
                    account = self._require(conn, account_id)
            except sqlite3.IntegrityError:
                continue
            if account.discord_id is not None:
                raise AlreadyLinked(account.discord_id)
            return account
        raise StoreUnavailable("Could not store a unique link code.")

    def set_banned(self, account_id: str, reason: str) -> Account:
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE accounts SET is_banned = 1, ban_reason = ?
                WHERE id = ? AND is_banned = 0
                """,
                (reason, account_id),
            )
            return self._require(conn, account_id)

    def update_ban_reason(self, account_id: str, reason: str) -> Account:
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE accounts SET ban_reason = ?
                WHERE id = ? AND is_banned = 1
                """,
                (reason, account_id),
            )
            return self._require(conn, account_id)

    def update_password_hash(self, account_id: str, password_hash: str) -> Account:
        with self._connection() as conn:
            conn.execute(
                "UPDATE accounts SET password_hash = ? WHERE id = ?",
                (password_hash, account_id),
            )
            return self._require(conn, account_id)
