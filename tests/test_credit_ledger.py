from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import utc
from practicehub.domain.memberships.credit_ledger import CreditLedger, is_spendable
from practicehub.exceptions import InsufficientCredits, NotFoundError, ValidationError
from practicehub.models import MembershipTier, Transaction
from practicehub.shared.timezones import ensure_utc, utcnow


@pytest.fixture
def ledger(db) -> CreditLedger:
    return CreditLedger(db)


class TestDebit:
    def test_debit_within_allowance(self, ledger, membership, db):
        result = ledger.debit(membership.id, 30, "Appointment #1", appointment_id=None)
        db.commit()
        assert result.applied
        assert result.remaining_credits == 70
        assert membership.used_credits == 30

        recorded = db.query(Transaction).filter(Transaction.type == "membership_credit").one()
        assert recorded.amount == 30
        assert recorded.description == "Appointment #1"
        assert recorded.status == "completed"

    def test_debit_is_all_or_nothing(self, ledger, membership, db):
        membership.used_credits = 90.0
        db.commit()

        short = ledger.debit(membership.id, 20, "Too much")
        assert not short.applied
        assert short.remaining_credits == 10
        assert membership.used_credits == 90

        exact = ledger.debit(membership.id, 10, "Exactly the rest")
        db.commit()
        assert exact.applied
        assert membership.used_credits == 100
        assert exact.remaining_credits == 0
        assert db.query(Transaction).count() == 1

    def test_strict_debit_raises(self, ledger, membership, db):
        membership.used_credits = 90.0
        db.commit()
        with pytest.raises(InsufficientCredits) as exc_info:
            ledger.debit(membership.id, 20, "Too much", strict=True)
        assert exc_info.value.status_code == 400
        assert membership.used_credits == 90

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, ledger, membership, amount):
        with pytest.raises(ValidationError):
            ledger.debit(membership.id, amount, "Nothing")

    def test_suspended_membership_cannot_spend(self, ledger, membership, db):
        membership.status = "suspended"
        db.commit()
        result = ledger.debit(membership.id, 10, "Visit")
        assert not result.applied
        assert membership.used_credits == 0

    def test_canceled_membership_spends_until_end_date(self, ledger, membership, db):
        membership.status = "canceled"
        db.commit()
        assert ledger.debit(membership.id, 10, "Visit").applied

        membership.end_date = utcnow() - timedelta(days=1)
        db.commit()
        assert not ledger.debit(membership.id, 10, "Visit").applied
        assert membership.used_credits == 10

    def test_unknown_membership(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.debit(9999, 10, "Visit")


class TestCycle:
    def test_reset_cycle_restores_allowance(self, ledger, membership, db):
        membership.used_credits = 80.0
        db.commit()
        period_start = utc(2030, 4, 1)
        ledger.reset_cycle(membership.id, period_start)
        db.commit()
        assert membership.used_credits == 0
        assert membership.monthly_credits == 100
        assert ensure_utc(membership.current_period_start) == period_start

    def test_downgrade_below_usage_keeps_used(self, ledger, membership, db, org):
        basic = MembershipTier(organization_id=org.id, name="Basic", monthly_price=29.0, monthly_credits=40.0)
        db.add(basic)
        membership.used_credits = 60.0
        db.commit()

        ledger.change_tier(membership.id, basic)
        db.commit()
        assert membership.tier_id == basic.id
        assert membership.used_credits == 60
        assert membership.monthly_credits == 60
        assert not ledger.debit(membership.id, 1, "Visit").applied

        ledger.reset_cycle(membership.id)
        db.commit()
        assert membership.monthly_credits == 40
        assert membership.used_credits == 0

    def test_upgrade_raises_allowance_immediately(self, ledger, membership, db, org):
        platinum = MembershipTier(
            organization_id=org.id, name="Platinum", monthly_price=199.0, monthly_credits=250.0
        )
        db.add(platinum)
        membership.used_credits = 100.0
        db.commit()

        ledger.change_tier(membership.id, platinum)
        db.commit()
        assert membership.monthly_credits == 250
        assert ledger.debit(membership.id, 150, "Visit").applied


def test_is_spendable_statuses(membership):
    now = utcnow()
    membership.status = "active"
    assert is_spendable(membership, now)
    membership.status = "suspended"
    assert not is_spendable(membership, now)
    membership.status = "canceled"
    membership.end_date = now + timedelta(hours=1)
    assert is_spendable(membership, now)
    membership.end_date = None
    assert not is_spendable(membership, now)
