"""
Rewards ledger - points as an append-only log.

Entries are never updated or deleted; a balance is always the SUM of a
client's entries. Tier is derived from the balance at read time.
"""

import logging
import math
from typing import Optional

from sqlalchemy.orm import Session

from ...config import BASE_POINTS_PER_UNIT
from ...exceptions import InsufficientBalance, NotFoundError, ValidationError
from ...models import RewardLedgerEntry, RewardOption
from ...tenant import TenantContext, scoped_reference
from .repository import RewardsRepository
from .schemas import RewardTier

logger = logging.getLogger(__name__)

# Minimum balance for each tier, highest first
TIER_THRESHOLDS: tuple[tuple[RewardTier, int], ...] = (
    (RewardTier.PLATINUM, 5000),
    (RewardTier.GOLD, 2500),
    (RewardTier.SILVER, 1000),
    (RewardTier.BRONZE, 0),
)


def tier_for_balance(balance: int) -> RewardTier:
    for tier, minimum in TIER_THRESHOLDS:
        if balance >= minimum:
            return tier
    return RewardTier.BRONZE


def next_tier(balance: int) -> tuple[Optional[RewardTier], Optional[int]]:
    """The next tier up and the points still needed, or (None, None) at the top"""
    for tier, minimum in reversed(TIER_THRESHOLDS):
        if balance < minimum:
            return tier, minimum - balance
    return None, None


def points_for_visit(service_price: float, points_multiplier: float = 0.0) -> int:
    """base rate x (1 + tier bonus), rounded down"""
    return int(math.floor(service_price * BASE_POINTS_PER_UNIT * (1 + (points_multiplier or 0.0))))


class RewardsLedger:
    def __init__(self, db: Session):
        self.db = db
        self.repo = RewardsRepository()

    def append(
        self,
        client_id: int,
        organization_id: int,
        points_delta: int,
        reason: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reward_option_id: Optional[int] = None,
    ) -> RewardLedgerEntry:
        """Add an immutable entry. Flushes; the caller commits."""
        if not isinstance(points_delta, int) or points_delta == 0:
            raise ValidationError("Points delta must be a non-zero integer")
        entry = RewardLedgerEntry(
            organization_id=organization_id,
            client_id=client_id,
            points=points_delta,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            reward_option_id=reward_option_id,
        )
        self.repo.add_entry(self.db, entry)
        logger.info(f"⭐ {points_delta:+d} points for client {client_id}: {reason}")
        return entry

    def append_once(
        self,
        client_id: int,
        organization_id: int,
        points_delta: int,
        reason: str,
        reference_type: str,
        reference_id: int,
    ) -> Optional[RewardLedgerEntry]:
        """Append unless an entry for this reference already exists"""
        if self.repo.has_reference(self.db, client_id, reference_type, reference_id):
            logger.info(
                f"ℹ️ Points for {reference_type} #{reference_id} already awarded to client {client_id}"
            )
            return None
        return self.append(
            client_id, organization_id, points_delta, reason, reference_type, reference_id
        )

    def balance(self, client_id: int) -> int:
        return self.repo.sum_points(self.db, client_id)

    def history(self, client_id: int, limit: int = 50) -> list[RewardLedgerEntry]:
        return self.repo.list_entries(self.db, client_id, limit)

    def redeem(self, client_id: int, option_id: int, tenant: TenantContext) -> RewardLedgerEntry:
        """Spend points on a catalog option; fails with InsufficientBalance when short"""
        if self.repo.lock_client(self.db, client_id) is None:
            raise NotFoundError("Client not found", details={"id": client_id})
        option = scoped_reference(self.db, RewardOption, option_id, tenant, label="RewardOption")
        if not option.is_active:
            raise ValidationError("Reward option is not available", details={"optionId": option.id})

        balance = self.balance(client_id)
        if balance < option.points_cost:
            logger.info(
                f"ℹ️ Client {client_id} cannot redeem option {option.id}: {balance} < {option.points_cost}"
            )
            raise InsufficientBalance(balance, option.points_cost)

        return self.append(
            client_id,
            tenant.organization_id,
            -option.points_cost,
            f"Redeemed: {option.name}",
            reference_type="redemption",
            reward_option_id=option.id,
        )
