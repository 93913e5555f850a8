"""
Credit ledger - a membership's monthly credit allowance.

`used_credits <= monthly_credits` always holds: debits are all-or-nothing
under a row lock, and only the billing reconciler resets a cycle. Methods
flush but never commit; callers own the transaction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import InsufficientCredits, NotFoundError, ValidationError
from ...models import Membership, MembershipTier
from ...shared.timezones import ensure_utc, utcnow
from .repository import MembershipRepository
from .schemas import MembershipStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebitResult:
    applied: bool
    remaining_credits: float


def remaining_credits(membership: Membership) -> float:
    return round(membership.monthly_credits - membership.used_credits, 2)


def is_spendable(membership: Membership, now: Optional[datetime] = None) -> bool:
    """
    Active memberships spend credits. Canceled ones keep spending until end_date.
    Suspended memberships (failed payment) cannot spend until reactivated.
    """
    now = now or utcnow()
    if membership.status == MembershipStatus.ACTIVE.value:
        return True
    if membership.status == MembershipStatus.CANCELED.value:
        end_date = ensure_utc(membership.end_date)
        return end_date is not None and end_date > now
    return False


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db
        self.repo = MembershipRepository()

    def _load(self, membership_id: int) -> Membership:
        membership = self.repo.get_for_update(self.db, membership_id)
        if not membership:
            raise NotFoundError("Membership not found", details={"id": membership_id})
        return membership

    def debit(
        self,
        membership_id: int,
        amount: float,
        reason: str,
        appointment_id: Optional[int] = None,
        strict: bool = False,
    ) -> DebitResult:
        """
        Debit `amount` credits in full or not at all.

        A successful debit records a membership_credit transaction carrying the
        reason. When the allowance is short (or the membership cannot spend)
        nothing changes and `applied` is False; with strict=True an
        InsufficientCredits error is raised instead.
        """
        if amount is None or amount <= 0:
            raise ValidationError("Debit amount must be greater than zero")
        amount = round(float(amount), 2)

        membership = self._load(membership_id)
        remaining = remaining_credits(membership)

        if not is_spendable(membership):
            logger.info(
                f"ℹ️ Membership {membership.id} is {membership.status}; debit of {amount} not applied"
            )
            if strict:
                raise InsufficientCredits(remaining, amount)
            return DebitResult(applied=False, remaining_credits=remaining)

        if round(membership.used_credits + amount, 2) > membership.monthly_credits:
            logger.info(
                f"ℹ️ Membership {membership.id} has {remaining} credits; debit of {amount} rejected"
            )
            if strict:
                raise InsufficientCredits(remaining, amount)
            return DebitResult(applied=False, remaining_credits=remaining)

        membership.used_credits = round(membership.used_credits + amount, 2)
        self.repo.add_transaction(
            self.db,
            organization_id=membership.organization_id,
            client_id=membership.client_id,
            membership_id=membership.id,
            appointment_id=appointment_id,
            type="membership_credit",
            amount=amount,
            status="completed",
            description=reason,
        )
        remaining = remaining_credits(membership)
        logger.info(f"💳 Debited {amount} credits from membership {membership.id} ({reason}); {remaining} left")
        return DebitResult(applied=True, remaining_credits=remaining)

    def reset_cycle(self, membership_id: int, period_start: Optional[datetime] = None) -> Membership:
        """
        Start a new billing cycle: zero used_credits and load the current tier's
        allowance. Only the billing reconciler calls this, on a confirmed renewal.
        """
        membership = self._load(membership_id)
        tier = self.repo.get_tier(self.db, membership.tier_id)
        membership.used_credits = 0.0
        if tier is not None:
            membership.monthly_credits = tier.monthly_credits
        membership.current_period_start = period_start or utcnow()
        self.db.flush()
        logger.info(
            f"🔄 Credit cycle reset for membership {membership.id}: {membership.monthly_credits} credits"
        )
        return membership

    def change_tier(self, membership_id: int, tier: MembershipTier) -> Membership:
        """
        Switch tier for the current cycle onward. used_credits is never touched;
        if the new allowance is below what was already consumed, the cycle keeps
        an allowance equal to used_credits and the new tier applies from the next reset.
        """
        membership = self._load(membership_id)
        previous = membership.monthly_credits
        membership.tier = tier
        membership.monthly_credits = max(tier.monthly_credits, membership.used_credits)
        self.db.flush()
        logger.info(
            f"🔀 Membership {membership.id} moved to tier {tier.id}: credits {previous} -> "
            f"{membership.monthly_credits} (used {membership.used_credits})"
        )
        return membership
