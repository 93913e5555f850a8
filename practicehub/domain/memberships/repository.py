"""Membership repository - Database operations for memberships and tiers"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Membership, MembershipTier, Transaction


class MembershipRepository:
    """Repository for membership database operations"""

    @staticmethod
    def get_for_update(db: Session, membership_id: int) -> Optional[Membership]:
        """Row-locked read; concurrent debits on one membership serialize here"""
        return (
            db.query(Membership)
            .filter(Membership.id == membership_id)
            .with_for_update()
            .first()
        )

    @staticmethod
    def get_by_client(
        db: Session, client_id: int, organization_id: Optional[int] = None, lock: bool = False
    ) -> Optional[Membership]:
        query = db.query(Membership).filter(Membership.client_id == client_id)
        if organization_id is not None:
            query = query.filter(Membership.organization_id == organization_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_by_subscription(
        db: Session, subscription_id: str, lock: bool = False
    ) -> Optional[Membership]:
        query = db.query(Membership).filter(
            Membership.processor_subscription_id == subscription_id
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_tier(db: Session, tier_id: int) -> Optional[MembershipTier]:
        return db.query(MembershipTier).filter(MembershipTier.id == tier_id).first()

    @staticmethod
    def list_active_tiers(db: Session, organization_id: int) -> list[MembershipTier]:
        return (
            db.query(MembershipTier)
            .filter(
                MembershipTier.organization_id == organization_id,
                MembershipTier.is_active.is_(True),
            )
            .order_by(MembershipTier.monthly_price)
            .all()
        )

    @staticmethod
    def add(db: Session, membership: Membership) -> Membership:
        db.add(membership)
        db.flush()
        return membership

    @staticmethod
    def add_transaction(db: Session, **fields) -> Transaction:
        transaction = Transaction(**fields)
        db.add(transaction)
        db.flush()
        return transaction
