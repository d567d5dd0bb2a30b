from __future__ import annotations

import asyncio
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from application.ban_sync import sync_external_ban
from application.services import (
    ExternalContext,
    link_account,
    reset_password,
    view_linked_account,
)
from config import Settings
from domain.repositories import AccountRepository, PasswordHasher, ThreatLogRepository
from interfaces.discord.audit import make_ban_reason_lookup

logger = logging.getLogger(__name__)


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider="discord",
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


def format_account_info(account) -> str:
    joined = int(account.created_at.timestamp())
    return (
        "**PulseHub Account Linked**\n\n"
        f"**Username:** `{account.username}`\n"
        f"**Email:** `{account.email}`\n"
        f"**Joined:** <t:{joined}:R>"
    )


class PulseHubBot(commands.Bot):
    """
    Bot that registers its slash commands on startup.

    With a guild ID the commands are copied to that guild, which makes
    them available immediately; otherwise they are synced globally.
    """

    def __init__(self, guild_id: Optional[int], **kwargs) -> None:
        super().__init__(**kwargs)
        self._guild_id = guild_id

    async def setup_hook(self) -> None:
        if self._guild_id:
            guild = discord.Object(id=self._guild_id)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Registered %d slash commands in guild %s", len(synced), self._guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Registered %d global slash commands", len(synced))


def create_discord_bot(
    account_repo: AccountRepository,
    hasher: PasswordHasher,
    settings: Settings,
    threat_log: Optional[ThreatLogRepository] = None,
) -> commands.Bot:
    """
    Configure and return the PulseHub Discord bot:
    /link, /reset-password and /viewuser, plus the guild-ban listener
    that mirrors bans onto linked accounts.
    """

    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.moderation = True

    bot = PulseHubBot(
        settings.discord_guild_id,
        command_prefix="!",
        intents=intents,
        help_command=None,
    )

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.tree.command(name="link", description="Link your PulseHub account to your Discord")
    @app_commands.describe(code="Your PulseHub link code from the website")
    async def link_cmd(interaction: discord.Interaction, code: str):
        await interaction.response.defer(ephemeral=True)
        result = await asyncio.to_thread(
            link_account, code, str(interaction.user.id), account_repo
        )
        prefix = "✅" if result.success else "❌"
        await interaction.followup.send(f"{prefix} {result.message}", ephemeral=True)

    @bot.tree.command(
        name="reset-password",
        description="Reset your PulseHub account password (linked accounts only)",
    )
    @app_commands.describe(new_password="Choose a new password (min 6 characters)")
    async def reset_password_cmd(interaction: discord.Interaction, new_password: str):
        await interaction.response.defer(ephemeral=True)
        result = await asyncio.to_thread(
            reset_password,
            _build_external_context(interaction.user),
            new_password,
            account_repo,
            hasher,
        )
        if not result.success:
            await interaction.followup.send(f"❌ {result.error_message}", ephemeral=True)
            return
        await interaction.followup.send(
            "✅ Your PulseHub password has been successfully reset!\n\n"
            "You can now log in with your new password.",
            ephemeral=True,
        )

    @bot.tree.command(name="viewuser", description="View your linked PulseHub account information")
    async def viewuser_cmd(interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        result = await asyncio.to_thread(
            view_linked_account, _build_external_context(interaction.user), account_repo
        )
        if not result.success:
            await interaction.followup.send(f"❌ {result.error_message}", ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ {format_account_info(result.account)}", ephemeral=True
        )

    @bot.event
    async def on_member_ban(guild: discord.Guild, user: discord.abc.User):
        logger.info("%s was banned from %s", user, guild.name)
        await sync_external_ban(
            str(user.id),
            account_repo,
            reason_lookup=make_ban_reason_lookup(guild),
            lookup_timeout=settings.audit_lookup_timeout,
            default_reason=settings.default_ban_reason,
            threat_log=threat_log,
        )

    return bot
