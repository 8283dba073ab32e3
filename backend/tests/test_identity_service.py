import unittest
from unittest.mock import patch

from db_support import make_session
from sqlalchemy import func, select, update

from refledger.db.models import User
from refledger.schemas.users import UserProfile
from refledger.services.errors import (
    CodeAllocationExhausted,
    DuplicateIdentity,
    LinkInactiveOrUnknown,
    ReferralCycle,
    ReferrerAlreadySet,
    UnknownReferralCode,
)
from refledger.services import identity_service
from refledger.services.identity_service import (
    claim_referrer,
    create_user,
    get_referral_chain,
    get_user_by_referral_code,
    get_user_by_telegram_id,
    list_referred_users,
)
from refledger.services.referral_service import deactivate_link, ensure_referral_account, issue_link


class CreateUserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()

    def tearDown(self) -> None:
        self.db.close()

    def test_new_user_gets_prefixed_unique_code(self) -> None:
        user = create_user(self.db, 1001, UserProfile(username="  alice ", first_name="Alice"))
        self.assertTrue(user.referral_code.startswith("ZB"))
        self.assertEqual(user.username, "alice")
        self.assertIsNone(user.referred_by_user_id)
        self.assertEqual(get_user_by_telegram_id(self.db, 1001).id, user.id)

    def test_referral_codes_are_distinct_across_users(self) -> None:
        codes = {create_user(self.db, 2000 + index).referral_code for index in range(25)}
        self.assertEqual(len(codes), 25)

    def test_referrer_code_links_new_user_to_referrer(self) -> None:
        alice = create_user(self.db, 1)
        bob = create_user(self.db, 2, referrer_code=alice.referral_code.lower())
        self.assertEqual(bob.referred_by_user_id, alice.id)
        self.assertEqual([user.id for user in list_referred_users(self.db, alice.id)], [bob.id])

    def test_duplicate_telegram_id_is_rejected(self) -> None:
        create_user(self.db, 7)
        with self.assertRaises(DuplicateIdentity):
            create_user(self.db, 7)

    def test_unknown_referrer_code_fails_without_creating_user(self) -> None:
        with self.assertRaises(UnknownReferralCode):
            create_user(self.db, 8, referrer_code="ZBNOPE")
        self.assertIsNone(get_user_by_telegram_id(self.db, 8))

    def test_invite_code_signup_uses_account_owner_as_referrer(self) -> None:
        alice = create_user(self.db, 1)
        account = ensure_referral_account(self.db, alice.id)
        link = issue_link(self.db, account.id)
        bob = create_user(self.db, 2, invite_code=link.invite_code)
        self.assertEqual(bob.referred_by_user_id, alice.id)

    def test_inactive_invite_code_is_rejected_at_signup(self) -> None:
        alice = create_user(self.db, 1)
        link = issue_link(self.db, ensure_referral_account(self.db, alice.id).id)
        deactivate_link(self.db, link.id)
        with self.assertRaises(LinkInactiveOrUnknown):
            create_user(self.db, 2, invite_code=link.invite_code)


class CodeCollisionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()

    def tearDown(self) -> None:
        self.db.close()

    def test_collision_is_retried_with_fresh_code(self) -> None:
        alice = create_user(self.db, 1)
        with patch(
            "refledger.services.identity_service.generate_code",
            side_effect=[alice.referral_code, "ZBFRESH0001"],
        ):
            bob = create_user(self.db, 2)
        self.assertEqual(bob.referral_code, "ZBFRESH0001")

    def test_persistent_collisions_exhaust_allocation(self) -> None:
        alice = create_user(self.db, 1)
        with patch(
            "refledger.services.identity_service.generate_code",
            return_value=alice.referral_code,
        ) as generator:
            with self.assertRaises(CodeAllocationExhausted):
                create_user(self.db, 2)
        self.assertEqual(generator.call_count, 5)
        self.assertEqual(self.db.scalar(select(func.count(User.id))), 1)


class ClaimReferrerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.alice = create_user(self.db, 1)
        self.bob = create_user(self.db, 2, referrer_code=self.alice.referral_code)
        self.carol = create_user(self.db, 3, referrer_code=self.bob.referral_code)

    def tearDown(self) -> None:
        self.db.close()

    def test_first_claim_sets_referrer(self) -> None:
        dave = create_user(self.db, 4)
        claimed = claim_referrer(self.db, dave.id, self.carol.referral_code)
        self.assertEqual(claimed.referred_by_user_id, self.carol.id)

    def test_referrer_is_never_reassigned(self) -> None:
        with self.assertRaises(ReferrerAlreadySet):
            claim_referrer(self.db, self.bob.id, self.carol.referral_code)
        self.assertEqual(get_user_by_referral_code(self.db, self.bob.referral_code).referred_by_user_id, self.alice.id)

    def test_self_referral_is_rejected(self) -> None:
        with self.assertRaises(ReferralCycle):
            claim_referrer(self.db, self.alice.id, self.alice.referral_code)

    def test_cycle_through_downline_is_rejected(self) -> None:
        with self.assertRaises(ReferralCycle):
            claim_referrer(self.db, self.alice.id, self.carol.referral_code)
        self.assertIsNone(get_user_by_referral_code(self.db, self.alice.referral_code).referred_by_user_id)

    def test_opposite_claim_landing_during_check_is_seen(self) -> None:
        dave = create_user(self.db, 4)
        erin = create_user(self.db, 5)
        self.assertIsNone(erin.referred_by_user_id)
        original_lock = identity_service._lock_user
        calls = {"count": 0}

        def racing_lock(db, user_id):
            row = original_lock(db, user_id)
            calls["count"] += 1
            if calls["count"] == 1:
                # Erin claims Dave's code while Dave is claiming Erin's.
                db.execute(
                    update(User)
                    .where(User.id == erin.id)
                    .values(referred_by_user_id=dave.id)
                    .execution_options(synchronize_session=False)
                )
            return row

        with patch.object(identity_service, "_lock_user", side_effect=racing_lock):
            with self.assertRaises(ReferralCycle):
                claim_referrer(self.db, dave.id, erin.referral_code)

        self.assertGreaterEqual(calls["count"], 3)
        self.assertIsNone(get_user_by_referral_code(self.db, dave.referral_code).referred_by_user_id)

    def test_unknown_code_is_rejected(self) -> None:
        dave = create_user(self.db, 4)
        with self.assertRaises(UnknownReferralCode):
            claim_referrer(self.db, dave.id, "ZBMISSING")

    def test_upline_is_nearest_first_and_bounded(self) -> None:
        dave = create_user(self.db, 4, referrer_code=self.carol.referral_code)
        erin = create_user(self.db, 5, referrer_code=dave.referral_code)
        chain = get_referral_chain(self.db, erin.id)
        self.assertEqual([user.id for user in chain], [dave.id, self.carol.id, self.bob.id])
        self.assertEqual(len(get_referral_chain(self.db, erin.id, max_depth=1)), 1)
        self.assertEqual(get_referral_chain(self.db, self.alice.id), [])


if __name__ == "__main__":
    unittest.main()
