from decimal import Decimal
import unittest
from unittest.mock import patch

from db_support import make_session
from sqlalchemy import update

from refledger.db.models import RewardWalletBalance
from refledger.services import reward_service
from refledger.services.admin_service import ROLE_ADMIN, create_admin
from refledger.services.errors import (
    InsufficientUnpaidBalance,
    InvalidAmount,
    InvalidRequest,
    NotFound,
    Unauthorized,
)
from refledger.services.identity_service import create_user
from refledger.services.reward_service import (
    ENTRY_CREDIT,
    ENTRY_REVERSAL,
    ENTRY_SETTLE,
    credit,
    get_balance,
    list_entries,
    normalize_amount,
    reverse,
    settle,
)


class RewardLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.user_id = create_user(self.db, 300).id

    def tearDown(self) -> None:
        self.db.close()

    def test_new_user_has_zero_balance(self) -> None:
        balance = get_balance(self.db, self.user_id)
        self.assertEqual(balance.total_paid, 0)
        self.assertEqual(balance.total_unpaid, 0)

    def test_credit_then_settle_moves_unpaid_to_paid(self) -> None:
        credit(self.db, self.user_id, 100)
        balance = settle(self.db, self.user_id, 40)
        self.assertEqual(balance.total_unpaid, Decimal("60"))
        self.assertEqual(balance.total_paid, Decimal("40"))

        with self.assertRaises(InsufficientUnpaidBalance):
            settle(self.db, self.user_id, 100)
        balance = get_balance(self.db, self.user_id)
        self.assertEqual(balance.total_unpaid, Decimal("60"))
        self.assertEqual(balance.total_paid, Decimal("40"))

    def test_credit_increases_total_by_exact_amount(self) -> None:
        credit(self.db, self.user_id, "0.125")
        before = get_balance(self.db, self.user_id)
        before_total = before.total_paid + before.total_unpaid
        after = credit(self.db, self.user_id, "1.375")
        self.assertEqual(after.total_paid + after.total_unpaid - before_total, Decimal("1.375"))

    def test_settle_keeps_total_unchanged(self) -> None:
        credit(self.db, self.user_id, 10)
        balance = settle(self.db, self.user_id, "10")
        self.assertEqual(balance.total_unpaid, 0)
        self.assertEqual(balance.total_paid + balance.total_unpaid, Decimal("10"))

    def test_non_positive_amounts_are_rejected(self) -> None:
        for amount in (0, -5, "-0.1", "abc", "NaN", "0.000000001"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    credit(self.db, self.user_id, amount)
                with self.assertRaises(InvalidAmount):
                    settle(self.db, self.user_id, amount)

    def test_amounts_outside_ledger_range_are_rejected(self) -> None:
        for amount in ("1e25", Decimal("1e20"), "100000000000000000000"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    credit(self.db, self.user_id, amount)
        self.assertEqual(get_balance(self.db, self.user_id).total_unpaid, 0)

    def test_excess_precision_is_rejected_not_rounded(self) -> None:
        with self.assertRaises(InvalidAmount):
            credit(self.db, self.user_id, "0.123456789")
        self.assertEqual(normalize_amount("0.12345678"), Decimal("0.12345678"))
        balance = credit(self.db, self.user_id, "0.12345678")
        self.assertEqual(balance.total_paid + balance.total_unpaid, Decimal("0.12345678"))

    def test_settle_without_balance_is_insufficient(self) -> None:
        with self.assertRaises(InsufficientUnpaidBalance):
            settle(self.db, self.user_id, 1)

    def test_unknown_user_is_rejected(self) -> None:
        with self.assertRaises(NotFound):
            credit(self.db, "missing", 1)

    def test_every_movement_is_recorded(self) -> None:
        credit(self.db, self.user_id, 5)
        settle(self.db, self.user_id, 2)
        entries = list_entries(self.db, self.user_id)
        self.assertEqual(sorted(entry.entry_type for entry in entries), [ENTRY_CREDIT, ENTRY_SETTLE])
        settle_entry = next(entry for entry in entries if entry.entry_type == ENTRY_SETTLE)
        self.assertEqual(settle_entry.paid_after, Decimal("2"))
        self.assertEqual(settle_entry.unpaid_after, Decimal("3"))


class RewardInterleavingTests(unittest.TestCase):
    """Another writer commits between our read and our conditional update."""

    def setUp(self) -> None:
        self.db = make_session()
        self.user_id = create_user(self.db, 500).id
        credit(self.db, self.user_id, 100)

    def tearDown(self) -> None:
        self.db.close()

    def _commit_other_writer(self, **values) -> None:
        self.db.execute(
            update(RewardWalletBalance)
            .where(RewardWalletBalance.user_id == self.user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def test_concurrent_credit_is_not_lost(self) -> None:
        original_load = reward_service._load_balance
        calls = {"count": 0}

        def racing_load(db, user_id):
            row = original_load(db, user_id)
            calls["count"] += 1
            if calls["count"] == 1:
                self._commit_other_writer(total_unpaid=RewardWalletBalance.total_unpaid + Decimal("5"))
            return row

        with patch.object(reward_service, "_load_balance", side_effect=racing_load):
            balance = credit(self.db, self.user_id, 10)

        self.assertEqual(balance.total_unpaid, Decimal("115"))
        self.assertEqual(balance.total_paid, 0)

    def test_settle_is_checked_against_committed_unpaid(self) -> None:
        original_require = reward_service._require_user

        def racing_require(db, user_id):
            original_require(db, user_id)
            self._commit_other_writer(
                total_unpaid=RewardWalletBalance.total_unpaid - Decimal("90"),
                total_paid=RewardWalletBalance.total_paid + Decimal("90"),
            )

        with patch.object(reward_service, "_require_user", side_effect=racing_require):
            with self.assertRaises(InsufficientUnpaidBalance):
                settle(self.db, self.user_id, 20)

        balance = get_balance(self.db, self.user_id)
        self.assertEqual(balance.total_unpaid, Decimal("10"))
        self.assertEqual(balance.total_paid, Decimal("90"))

    def test_settle_after_concurrent_settle_keeps_totals(self) -> None:
        original_require = reward_service._require_user

        def racing_require(db, user_id):
            original_require(db, user_id)
            self._commit_other_writer(
                total_unpaid=RewardWalletBalance.total_unpaid - Decimal("30"),
                total_paid=RewardWalletBalance.total_paid + Decimal("30"),
            )

        with patch.object(reward_service, "_require_user", side_effect=racing_require):
            balance = settle(self.db, self.user_id, 70)

        self.assertEqual(balance.total_unpaid, 0)
        self.assertEqual(balance.total_paid, Decimal("100"))


class RewardAdminOperationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.user_id = create_user(self.db, 400).id
        self.super_admin = create_admin(self.db, 9000, "super_admin")
        self.admin = create_admin(self.db, 9001, ROLE_ADMIN, acting_admin_id=self.super_admin.id)
        credit(self.db, self.user_id, 50)

    def tearDown(self) -> None:
        self.db.close()

    def test_admin_settle_records_actor(self) -> None:
        settle(self.db, self.user_id, 5, acting_admin_id=self.admin.id)
        entry = next(e for e in list_entries(self.db, self.user_id) if e.entry_type == ENTRY_SETTLE)
        self.assertEqual(entry.admin_id, self.admin.id)

    def test_settle_by_unknown_admin_is_unauthorized(self) -> None:
        with self.assertRaises(Unauthorized):
            settle(self.db, self.user_id, 5, acting_admin_id="ghost")
        self.assertEqual(get_balance(self.db, self.user_id).total_paid, 0)

    def test_reversal_reduces_unpaid_only(self) -> None:
        settle(self.db, self.user_id, 10)
        balance = reverse(self.db, self.user_id, 15, self.super_admin.id, "fraudulent trade volume")
        self.assertEqual(balance.total_unpaid, Decimal("25"))
        self.assertEqual(balance.total_paid, Decimal("10"))
        entry = next(e for e in list_entries(self.db, self.user_id) if e.entry_type == ENTRY_REVERSAL)
        self.assertEqual(entry.admin_id, self.super_admin.id)
        self.assertEqual(entry.reason, "fraudulent trade volume")

    def test_reversal_requires_super_admin(self) -> None:
        with self.assertRaises(Unauthorized):
            reverse(self.db, self.user_id, 1, self.admin.id, "not allowed")

    def test_reversal_requires_reason_and_unpaid_funds(self) -> None:
        with self.assertRaises(InvalidRequest):
            reverse(self.db, self.user_id, 1, self.super_admin.id, "  ")
        with self.assertRaises(InsufficientUnpaidBalance):
            reverse(self.db, self.user_id, 51, self.super_admin.id, "too much")


if __name__ == "__main__":
    unittest.main()
