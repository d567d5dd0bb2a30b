from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from domain.models import ThreatLogEntry
from domain.repositories import AccountRepository, ThreatLogRepository

from .audit import record_threat

logger = logging.getLogger(__name__)

DEFAULT_BAN_REASON = "No reason provided"
DEFAULT_LOOKUP_TIMEOUT = 3.0

ReasonLookup = Callable[[str], Awaitable[Optional[str]]]


class BanSyncOutcome(enum.Enum):
    BANNED = "banned"
    ALREADY_BANNED = "already_banned"
    NO_ACCOUNT = "no_account"
    FAILED = "failed"


@dataclass
class BanSyncResult:
    outcome: BanSyncOutcome
    discord_id: str
    account_id: Optional[str] = None
    reason: Optional[str] = None


async def _lookup_reason(
    reason_lookup: ReasonLookup,
    discord_id: str,
    timeout: float,
) -> Optional[str]:
    try:
        reason = await asyncio.wait_for(reason_lookup(discord_id), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("[Ban] Audit log lookup timed out for %s", discord_id)
        return None
    except Exception as exc:
        logger.warning("[Ban] Could not fetch audit log for %s: %s", discord_id, exc)
        return None
    if reason is None:
        return None
    reason = str(reason).strip()
    return reason or None


async def sync_external_ban(
    discord_id: str,
    account_repo: AccountRepository,
    reason_hint: Optional[str] = None,
    reason_lookup: Optional[ReasonLookup] = None,
    lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    default_reason: str = DEFAULT_BAN_REASON,
    threat_log: Optional[ThreatLogRepository] = None,
) -> BanSyncResult:
    """
    Reflect a Discord guild ban onto the linked PulseHub account.

    The ban is written first, with `reason_hint` or `default_reason`, so
    the audit-log lookup never delays it. If `reason_lookup` then yields
    a reason within `lookup_timeout` seconds, it replaces the stored one.

    This coroutine never raises: every failure is logged and reported as
    `BanSyncOutcome.FAILED`, so the gateway listener keeps running.
    Duplicate deliveries of the same event are harmless.
    """

    discord_id = str(discord_id)
    try:
        account = await asyncio.to_thread(account_repo.find_by_discord_id, discord_id)
        if account is None:
            logger.info("[Ban] No PulseHub account linked for discord user %s", discord_id)
            await asyncio.to_thread(
                record_threat,
                threat_log,
                ThreatLogEntry(
                    ip="discord",
                    reason="suspicious_behavior",
                    action_taken="logged",
                    endpoint="guild_ban",
                    metadata={"discord_id": discord_id, "linked": False},
                ),
            )
            return BanSyncResult(outcome=BanSyncOutcome.NO_ACCOUNT, discord_id=discord_id)

        was_banned = account.is_banned
        account = await asyncio.to_thread(
            account_repo.set_banned, account.id, reason_hint or default_reason
        )
        if was_banned:
            logger.info("[Ban] %s was already banned", account.username)
            return BanSyncResult(
                outcome=BanSyncOutcome.ALREADY_BANNED,
                discord_id=discord_id,
                account_id=account.id,
                reason=account.ban_reason,
            )
    except Exception:
        logger.exception("[Ban] Failed to sync ban for discord user %s", discord_id)
        return BanSyncResult(outcome=BanSyncOutcome.FAILED, discord_id=discord_id)

    if reason_lookup is not None:
        enriched = await _lookup_reason(reason_lookup, discord_id, lookup_timeout)
        if enriched and enriched != account.ban_reason:
            try:
                account = await asyncio.to_thread(
                    account_repo.update_ban_reason, account.id, enriched
                )
            except Exception:
                logger.exception("[Ban] Could not store ban reason for %s", account.username)

    logger.info("[Ban] %s marked as banned: %s", account.username, account.ban_reason)
    return BanSyncResult(
        outcome=BanSyncOutcome.BANNED,
        discord_id=discord_id,
        account_id=account.id,
        reason=account.ban_reason,
    )
