from __future__ import annotations

from typing import Optional

import discord

from application.ban_sync import ReasonLookup


def reason_from_entry(entry: Optional[discord.AuditLogEntry], discord_id: str) -> Optional[str]:
    """Return the entry's reason if it is about `discord_id`."""

    if entry is None or entry.target is None:
        return None
    if str(entry.target.id) != str(discord_id):
        return None
    return entry.reason


def make_ban_reason_lookup(guild: discord.Guild) -> ReasonLookup:
    """
    Build a lookup that reads the newest ban entry from the guild audit log.

    The bot needs the View Audit Log permission; without it the lookup
    raises `discord.Forbidden`, which ban sync treats as "no reason".
    """

    async def lookup(discord_id: str) -> Optional[str]:
        async for entry in guild.audit_logs(limit=1, action=discord.AuditLogAction.ban):
            return reason_from_entry(entry, discord_id)
        return None

    return lookup
