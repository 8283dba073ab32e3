import unittest
from unittest.mock import patch

from db_support import make_session

from refledger.services import referral_service
from refledger.services.errors import LinkInactiveOrUnknown, LinkNotFound, NotFound
from refledger.services.identity_service import create_user
from refledger.services.referral_service import (
    deactivate_link,
    ensure_referral_account,
    get_referral_overview,
    issue_link,
    list_links,
    resolve_link,
    set_rewards_wallet,
)
from refledger.services.reward_service import credit


class ReferralAccountTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.user = create_user(self.db, 100)

    def tearDown(self) -> None:
        self.db.close()

    def test_ensure_account_is_idempotent(self) -> None:
        first = ensure_referral_account(self.db, self.user.id)
        second = ensure_referral_account(self.db, self.user.id)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.referral_code, second.referral_code)
        self.assertEqual(first.user_id, self.user.id)

    def test_account_codes_are_unique_per_account(self) -> None:
        other = create_user(self.db, 101)
        first = ensure_referral_account(self.db, self.user.id)
        second = ensure_referral_account(self.db, other.id)
        self.assertNotEqual(first.referral_code, second.referral_code)

    def test_account_requires_existing_user(self) -> None:
        with self.assertRaises(NotFound):
            ensure_referral_account(self.db, "missing-user")

    def test_account_code_collision_is_retried(self) -> None:
        other = create_user(self.db, 101)
        taken = ensure_referral_account(self.db, other.id).referral_code
        with patch(
            "refledger.services.referral_service.generate_code",
            side_effect=[taken, "ZBACCOUNT01"],
        ):
            account = ensure_referral_account(self.db, self.user.id)
        self.assertEqual(account.referral_code, "ZBACCOUNT01")

    def test_rewards_wallet_is_reassignable(self) -> None:
        account = ensure_referral_account(self.db, self.user.id)
        self.assertEqual(set_rewards_wallet(self.db, account.id, "wallet-1").rewards_wallet_id, "wallet-1")
        self.assertEqual(set_rewards_wallet(self.db, account.id, "wallet-2").rewards_wallet_id, "wallet-2")
        self.assertIsNone(set_rewards_wallet(self.db, account.id, "  ").rewards_wallet_id)


class ReferralLinkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.user = create_user(self.db, 200)
        self.account = ensure_referral_account(self.db, self.user.id)

    def tearDown(self) -> None:
        self.db.close()

    def test_issued_link_resolves_to_account(self) -> None:
        link = issue_link(self.db, self.account.id)
        self.assertTrue(link.is_active)
        self.assertEqual(resolve_link(self.db, link.invite_code).id, self.account.id)
        self.assertEqual(resolve_link(self.db, f" {link.invite_code.lower()} ").id, self.account.id)
        self.assertIsNotNone(self.db.get(type(self.account), self.account.id).last_link_update_at)

    def test_deactivated_link_no_longer_resolves(self) -> None:
        link = issue_link(self.db, self.account.id)
        deactivate_link(self.db, link.id)
        with self.assertRaises(LinkInactiveOrUnknown):
            resolve_link(self.db, link.invite_code)
        self.assertFalse(deactivate_link(self.db, link.id).is_active)

    def test_unknown_code_does_not_resolve(self) -> None:
        with self.assertRaises(LinkInactiveOrUnknown):
            resolve_link(self.db, "NOSUCHCODE")
        with self.assertRaises(LinkInactiveOrUnknown):
            resolve_link(self.db, "")

    def test_deactivate_missing_link(self) -> None:
        with self.assertRaises(LinkNotFound):
            deactivate_link(self.db, "missing-link")

    def test_multiple_links_stay_active_by_default(self) -> None:
        first = issue_link(self.db, self.account.id)
        second = issue_link(self.db, self.account.id)
        self.assertNotEqual(first.invite_code, second.invite_code)
        self.assertEqual(len(list_links(self.db, self.account.id, active_only=True)), 2)
        self.assertEqual(resolve_link(self.db, first.invite_code).id, self.account.id)

    def test_single_active_issue_deactivates_previous_links(self) -> None:
        first = issue_link(self.db, self.account.id)
        second = issue_link(self.db, self.account.id, single_active=True)
        active = list_links(self.db, self.account.id, active_only=True)
        self.assertEqual([link.id for link in active], [second.id])
        with self.assertRaises(LinkInactiveOrUnknown):
            resolve_link(self.db, first.invite_code)

    def test_single_active_policy_from_configuration(self) -> None:
        first = issue_link(self.db, self.account.id)
        with patch.object(referral_service.settings, "referral_single_active_link", True):
            issue_link(self.db, self.account.id)
        with self.assertRaises(LinkInactiveOrUnknown):
            resolve_link(self.db, first.invite_code)

    def test_issue_link_for_missing_account(self) -> None:
        with self.assertRaises(NotFound):
            issue_link(self.db, "missing-account")

    def test_overview_reports_links_referrals_and_balance(self) -> None:
        issue_link(self.db, self.account.id)
        create_user(self.db, 201, referrer_code=self.user.referral_code)
        credit(self.db, self.user.id, "2.5")
        overview = get_referral_overview(self.db, self.user)
        self.assertEqual(overview["account_id"], self.account.id)
        self.assertEqual(overview["active_link_count"], 1)
        self.assertEqual(overview["total_referrals"], 1)
        self.assertEqual(overview["total_unpaid"], 2.5)
        self.assertEqual(overview["total_paid"], 0)


if __name__ == "__main__":
    unittest.main()
