from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from domain.models import Account, ThreatLogEntry
from domain.repositories import AccountRepository, ThreatLogRepository

from .audit import record_threat

DEFAULT_BAN_NOTICE = "Banned from service."


class AuthState(enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED_UNLINKED = "authenticated_unlinked"
    AUTHENTICATED_LINKED = "authenticated_linked"
    AUTHENTICATED_BANNED = "authenticated_banned"


class View(enum.Enum):
    """Protected views and the link state they require."""

    LINK = "link"
    HOME = "home"


@dataclass
class ClientInfo:
    """What the web layer knows about the caller, for audit records."""

    ip: str
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass
class AuthDecision:
    state: AuthState
    account: Optional[Account] = None

    @property
    def ban_notice(self) -> str:
        if self.account is not None and self.account.ban_reason:
            return self.account.ban_reason
        return DEFAULT_BAN_NOTICE

    @property
    def destroy_session(self) -> bool:
        return self.state is AuthState.AUTHENTICATED_BANNED


def authorize(
    session_account_id: Optional[str],
    account_repo: AccountRepository,
    threat_log: Optional[ThreatLogRepository] = None,
    client: Optional[ClientInfo] = None,
) -> AuthDecision:
    """
    Classify the caller of a protected route.

    The account is always re-read from the store: ban status changes
    asynchronously and must never be taken from the session. A banned
    account gets `AUTHENTICATED_BANNED`, and the attempt is written to the
    threat log as ban evasion.

    `StoreUnavailable` propagates; the web layer turns it into an error page.
    """

    if not session_account_id:
        return AuthDecision(state=AuthState.ANONYMOUS)

    account = account_repo.get_by_id(session_account_id)
    if account is None:
        return AuthDecision(state=AuthState.ANONYMOUS)

    if account.is_banned:
        if client is not None:
            record_threat(
                threat_log,
                ThreatLogEntry(
                    ip=client.ip,
                    reason="ban_evasion",
                    action_taken="blocked",
                    user_agent=client.user_agent,
                    endpoint=client.endpoint,
                    account_id=account.id,
                ),
            )
        return AuthDecision(state=AuthState.AUTHENTICATED_BANNED, account=account)

    if not account.is_linked:
        return AuthDecision(state=AuthState.AUTHENTICATED_UNLINKED, account=account)

    return AuthDecision(state=AuthState.AUTHENTICATED_LINKED, account=account)


def redirect_for(decision: AuthDecision, view: View) -> Optional[str]:
    """
    Return where a caller must be sent instead of `view`, or None to allow it.

    Banned callers are not redirected here; the caller renders the ban
    notice and drops the session.
    """

    if decision.state is AuthState.ANONYMOUS:
        return "/login"
    if decision.state is AuthState.AUTHENTICATED_UNLINKED and view is View.HOME:
        return "/link"
    if decision.state is AuthState.AUTHENTICATED_LINKED and view is View.LINK:
        return "/home"
    return None
