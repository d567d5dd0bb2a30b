from __future__ import annotations

from typing import List, Optional, Protocol

from .models import Account, ThreatLogEntry


class AccountRepository(Protocol):
    """
    Persistence abstraction for PulseHub accounts.

    Implementations are responsible for:
    - Mapping between database rows and the `Account` domain model.
    - Enforcing uniqueness of username, email, link code and Discord ID
      in the store itself (indexes), not by checking first.
    - Translating driver errors into `domain.errors` exceptions.
    """

    def create_account(
        self,
        username: str,
        email: str,
        password_hash: str,
    ) -> Account:
        """
        Persist a new account with a freshly generated link code.

        Raises `DuplicateUsername` / `DuplicateEmail` on a
        case-insensitive collision.
        """

        ...

    def get_by_id(self, account_id: str) -> Optional[Account]:
        ...

    def find_by_credential(self, identifier: str) -> Optional[Account]:
        """Look up by username OR email, case-insensitive."""

        ...

    def find_by_link_code(self, code: str) -> Optional[Account]:
        """Exact match on a currently unconsumed link code."""

        ...

    def find_by_discord_id(self, discord_id: str) -> Optional[Account]:
        ...

    def link_code_exists(self, code: str) -> bool:
        ...

    def consume_link_code(
        self,
        account_id: str,
        code: str,
        discord_id: str,
    ) -> Account:
        """
        Atomically bind `discord_id` and clear `code`.

        Succeeds only while the account still holds `code` and has no
        Discord ID. Raises `AlreadyLinked` when the account (or another
        account) already owns a Discord ID, `CodeNotFound` when the code
        no longer matches.
        """

        ...

    def replace_link_code(self, account_id: str) -> Account:
        """Issue a new link code for a still-unlinked account."""

        ...

    def set_banned(self, account_id: str, reason: str) -> Account:
        """
        Mark the account as banned.

        Idempotent: an already banned account is returned unchanged.
        """

        ...

    def update_ban_reason(self, account_id: str, reason: str) -> Account:
        """Overwrite the reason of an account that is already banned."""

        ...

    def update_password_hash(self, account_id: str, password_hash: str) -> Account:
        ...


class ThreatLogRepository(Protocol):
    """
    Append-only sink for `ThreatLogEntry` records.
    """

    def append(self, entry: ThreatLogEntry) -> None:
        ...

    def recent(self, limit: int = 50) -> List[ThreatLogEntry]:
        """Return the newest entries first."""

        ...


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str:
        ...

    def verify(self, password: str, password_hash: str) -> bool:
        ...
