"""Rewards repository - Database operations for the points ledger"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Client, RewardLedgerEntry, RewardOption


class RewardsRepository:
    """Repository for reward ledger database operations"""

    @staticmethod
    def sum_points(db: Session, client_id: int) -> int:
        total = (
            db.query(func.coalesce(func.sum(RewardLedgerEntry.points), 0))
            .filter(RewardLedgerEntry.client_id == client_id)
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def has_reference(db: Session, client_id: int, reference_type: str, reference_id: int) -> bool:
        return (
            db.query(RewardLedgerEntry.id)
            .filter(
                RewardLedgerEntry.client_id == client_id,
                RewardLedgerEntry.reference_type == reference_type,
                RewardLedgerEntry.reference_id == reference_id,
            )
            .first()
            is not None
        )

    @staticmethod
    def add_entry(db: Session, entry: RewardLedgerEntry) -> RewardLedgerEntry:
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def list_entries(db: Session, client_id: int, limit: int = 50) -> list[RewardLedgerEntry]:
        return (
            db.query(RewardLedgerEntry)
            .filter(RewardLedgerEntry.client_id == client_id)
            .order_by(RewardLedgerEntry.created_at.desc(), RewardLedgerEntry.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def lock_client(db: Session, client_id: int) -> Optional[Client]:
        """Row lock serializing redemptions for one client"""
        return db.query(Client).filter(Client.id == client_id).with_for_update().first()

    @staticmethod
    def list_active_options(db: Session, organization_id: int) -> list[RewardOption]:
        return (
            db.query(RewardOption)
            .filter(
                RewardOption.organization_id == organization_id,
                RewardOption.is_active.is_(True),
            )
            .order_by(RewardOption.points_cost)
            .all()
        )
