from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    """
    A PulseHub account.

    This model is intentionally simple and independent of any
    particular transport (Discord, web) or database schema. The
    Discord identity starts out empty and is bound exactly once by
    consuming the account's link code.
    """

    id: str
    username: str
    email: str
    password_hash: str
    link_code: Optional[str] = None
    discord_id: Optional[str] = None
    is_banned: bool = False
    ban_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_linked(self) -> bool:
        return self.discord_id is not None


# Allowed values for `ThreatLogEntry.reason`.
THREAT_REASONS = (
    "ban_evasion",
    "vpn_proxy",
    "rapid_requests",
    "headless_browser",
    "adblock_detected",
    "api_bomb",
    "ddos_attempt",
    "suspicious_behavior",
)

THREAT_ACTIONS = ("blocked", "redirected", "logged", "captcha")


@dataclass
class ThreatLogEntry:
    """Append-only audit record of an access decision."""

    ip: str
    reason: str
    action_taken: Optional[str] = None
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    account_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
