import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

import discord

from application.services import link_account, register_account
from fakes import (
    InMemoryAccountRepository,
    InMemoryThreatLog,
    PlainPasswordHasher,
    make_settings,
)
from interfaces.discord.audit import make_ban_reason_lookup, reason_from_entry
from interfaces.discord.handlers import create_discord_bot, format_account_info


class FakeGuild:
    name = "PulseHub"

    def __init__(self, entries=(), error=None):
        self._entries = list(entries)
        self._error = error
        self.requested = []

    def audit_logs(self, **kwargs):
        self.requested.append(kwargs)
        return self._iterate()

    async def _iterate(self):
        if self._error is not None:
            raise self._error
        for entry in self._entries:
            yield entry


def ban_entry(target_id, reason):
    return SimpleNamespace(target=SimpleNamespace(id=target_id), reason=reason)


class RecordingResponse:
    def __init__(self):
        self.deferred = []

    async def defer(self, ephemeral=False, thinking=False):
        self.deferred.append(ephemeral)


class RecordingFollowup:
    def __init__(self):
        self.sent = []

    async def send(self, content, ephemeral=False):
        self.sent.append((content, ephemeral))


def fake_interaction(user_id, name="alice"):
    return SimpleNamespace(
        user=SimpleNamespace(id=user_id, display_name=name.title(), name=name),
        response=RecordingResponse(),
        followup=RecordingFollowup(),
    )


class AuditLookupTests(unittest.IsolatedAsyncioTestCase):
    def test_reason_from_entry_requires_matching_target(self):
        self.assertEqual(reason_from_entry(ban_entry(42, "Raiding"), "42"), "Raiding")
        self.assertIsNone(reason_from_entry(ban_entry(7, "Raiding"), "42"))
        self.assertIsNone(reason_from_entry(None, "42"))

    async def test_lookup_reads_newest_ban_entry(self):
        guild = FakeGuild([ban_entry(42, "Raiding")])
        reason = await make_ban_reason_lookup(guild)("42")
        self.assertEqual(reason, "Raiding")
        self.assertEqual(
            guild.requested, [{"limit": 1, "action": discord.AuditLogAction.ban}]
        )

    async def test_lookup_without_entries(self):
        self.assertIsNone(await make_ban_reason_lookup(FakeGuild())("42"))


class DiscordBotTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.account_repo = InMemoryAccountRepository()
        self.threat_log = InMemoryThreatLog()
        self.account = register_account(
            "alice", "alice@x.com", "Passw0rd!", self.account_repo, PlainPasswordHasher()
        ).account
        link_account(self.account.link_code, "999888777", self.account_repo)

    def _bot(self):
        return create_discord_bot(
            self.account_repo,
            PlainPasswordHasher(),
            make_settings(audit_lookup_timeout=0.1),
            self.threat_log,
        )

    async def test_slash_commands_are_registered(self):
        bot = self._bot()
        names = {command.name for command in bot.tree.get_commands()}
        self.assertEqual(names, {"link", "reset-password", "viewuser"})

    async def _run(self, name, interaction, *args):
        command = self._bot().tree.get_command(name)
        await command.callback(interaction, *args)
        self.assertEqual(interaction.response.deferred, [True])
        self.assertEqual(len(interaction.followup.sent), 1)
        content, ephemeral = interaction.followup.sent[0]
        self.assertTrue(ephemeral)
        return content

    async def test_link_command_links_the_caller(self):
        bob = register_account(
            "bob", "bob@x.com", "Passw0rd!", self.account_repo, PlainPasswordHasher()
        ).account

        reply = await self._run("link", fake_interaction(123456, "bob"), bob.link_code.lower())

        self.assertTrue(reply.startswith("✅"))
        stored = self.account_repo.get_by_id(bob.id)
        self.assertEqual(stored.discord_id, "123456")
        self.assertIsNone(stored.link_code)

    async def test_link_command_rejects_malformed_code(self):
        reply = await self._run("link", fake_interaction(123456, "bob"), "short")
        self.assertTrue(reply.startswith("❌"))
        self.assertIsNone(self.account_repo.find_by_discord_id("123456"))

    async def test_reset_password_command_rehashes(self):
        reply = await self._run("reset-password", fake_interaction(999888777), "newpass")

        self.assertTrue(reply.startswith("✅"))
        stored = self.account_repo.get_by_id(self.account.id)
        self.assertEqual(stored.password_hash, "plain$newpass")

    async def test_reset_password_command_requires_linked_account(self):
        reply = await self._run("reset-password", fake_interaction(42, "bob"), "newpass")
        self.assertTrue(reply.startswith("❌"))
        self.assertEqual(
            self.account_repo.get_by_id(self.account.id).password_hash, "plain$Passw0rd!"
        )

    async def test_viewuser_command_shows_linked_account(self):
        reply = await self._run("viewuser", fake_interaction(999888777))
        self.assertTrue(reply.startswith("✅"))
        self.assertIn("`alice`", reply)
        self.assertIn("`alice@x.com`", reply)

    async def test_viewuser_command_for_unlinked_user(self):
        reply = await self._run("viewuser", fake_interaction(42, "bob"))
        self.assertTrue(reply.startswith("❌"))

    async def test_member_ban_marks_linked_account(self):
        bot = self._bot()
        guild = FakeGuild([ban_entry(999888777, "Raiding")])
        await bot.on_member_ban(guild, SimpleNamespace(id=999888777))

        stored = self.account_repo.get_by_id(self.account.id)
        self.assertTrue(stored.is_banned)
        self.assertEqual(stored.ban_reason, "Raiding")

    async def test_member_ban_survives_audit_log_errors(self):
        bot = self._bot()
        guild = FakeGuild(error=RuntimeError("Missing Permissions"))
        await bot.on_member_ban(guild, SimpleNamespace(id=999888777))

        stored = self.account_repo.get_by_id(self.account.id)
        self.assertTrue(stored.is_banned)
        self.assertEqual(stored.ban_reason, "No reason provided")

    def test_format_account_info(self):
        account = self.account_repo.get_by_id(self.account.id)
        account.created_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        text = format_account_info(account)
        self.assertIn("`alice`", text)
        self.assertIn("`alice@x.com`", text)
        self.assertIn("<t:1704067200:R>", text)


if __name__ == "__main__":
    unittest.main()
