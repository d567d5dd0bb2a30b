import unittest

from application.auth_gate import (
    AuthState,
    ClientInfo,
    View,
    authorize,
    redirect_for,
)
from application.services import link_account, register_account
from fakes import InMemoryAccountRepository, InMemoryThreatLog, PlainPasswordHasher


class AuthGateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.account_repo = InMemoryAccountRepository()
        self.threat_log = InMemoryThreatLog()
        self.account = register_account(
            "alice", "alice@x.com", "Passw0rd!", self.account_repo, PlainPasswordHasher()
        ).account
        self.client = ClientInfo(ip="203.0.113.7", user_agent="test", endpoint="/home")

    def test_no_session_is_anonymous(self):
        for session_id in (None, ""):
            decision = authorize(session_id, self.account_repo)
            self.assertIs(decision.state, AuthState.ANONYMOUS)
            self.assertEqual(redirect_for(decision, View.HOME), "/login")
            self.assertEqual(redirect_for(decision, View.LINK), "/login")

    def test_stale_session_for_missing_account_is_anonymous(self):
        decision = authorize("does-not-exist", self.account_repo)
        self.assertIs(decision.state, AuthState.ANONYMOUS)

    def test_unlinked_account_is_sent_to_link_view(self):
        decision = authorize(self.account.id, self.account_repo)
        self.assertIs(decision.state, AuthState.AUTHENTICATED_UNLINKED)
        self.assertEqual(redirect_for(decision, View.HOME), "/link")
        self.assertIsNone(redirect_for(decision, View.LINK))

    def test_linked_account_has_full_access(self):
        link_account(self.account.link_code, "999888777", self.account_repo)
        decision = authorize(self.account.id, self.account_repo)
        self.assertIs(decision.state, AuthState.AUTHENTICATED_LINKED)
        self.assertIsNone(redirect_for(decision, View.HOME))
        self.assertEqual(redirect_for(decision, View.LINK), "/home")

    def test_ban_status_is_read_fresh_each_time(self):
        link_account(self.account.link_code, "999888777", self.account_repo)
        self.assertIs(
            authorize(self.account.id, self.account_repo).state,
            AuthState.AUTHENTICATED_LINKED,
        )
        self.account_repo.set_banned(self.account.id, "Raiding")
        decision = authorize(self.account.id, self.account_repo, self.threat_log, self.client)
        self.assertIs(decision.state, AuthState.AUTHENTICATED_BANNED)
        self.assertTrue(decision.destroy_session)
        self.assertEqual(decision.ban_notice, "Raiding")

    def test_banned_access_is_written_to_threat_log(self):
        self.account_repo.set_banned(self.account.id, "Raiding")
        authorize(self.account.id, self.account_repo, self.threat_log, self.client)
        self.assertEqual(len(self.threat_log.entries), 1)
        entry = self.threat_log.entries[0]
        self.assertEqual(entry.reason, "ban_evasion")
        self.assertEqual(entry.action_taken, "blocked")
        self.assertEqual(entry.ip, "203.0.113.7")
        self.assertEqual(entry.account_id, self.account.id)

    def test_banned_unlinked_account_is_still_banned(self):
        self.account_repo.set_banned(self.account.id, "")
        decision = authorize(self.account.id, self.account_repo)
        self.assertIs(decision.state, AuthState.AUTHENTICATED_BANNED)
        self.assertEqual(decision.ban_notice, "Banned from service.")


if __name__ == "__main__":
    unittest.main()
