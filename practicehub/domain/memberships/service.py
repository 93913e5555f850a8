"""Membership service - Business logic for subscribing, switching tiers and canceling"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...config import FRONTEND_URL
from ...exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ProcessorError,
    ValidationError,
)
from ...models import Client, Membership, MembershipTier
from ...shared.retry import run_in_transaction_async
from ...tenant import TenantContext, scoped_reference
from ..billing.payments_service import PaymentsProcessorService
from .credit_ledger import CreditLedger
from .repository import MembershipRepository
from .schemas import MembershipStatus

logger = logging.getLogger(__name__)


class MembershipService:
    """Service layer for membership business logic"""

    def __init__(self, db: Session, payments: PaymentsProcessorService):
        self.db = db
        self.payments = payments
        self.repo = MembershipRepository()
        self.ledger = CreditLedger(db)

    def _resolve_client_id(self, tenant: TenantContext, client_id: Optional[int]) -> int:
        if tenant.is_client:
            if tenant.client_id is None:
                raise PermissionDenied("No client profile linked to this account")
            if client_id is not None and client_id != tenant.client_id:
                raise PermissionDenied("Clients can only manage their own membership")
            return tenant.client_id
        if client_id is None:
            raise ValidationError("clientId is required")
        return client_id

    def get_membership(self, tenant: TenantContext, client_id: Optional[int] = None) -> Membership:
        client_id = self._resolve_client_id(tenant, client_id)
        membership = self.repo.get_by_client(self.db, client_id, tenant.organization_id)
        if not membership:
            raise NotFoundError("No membership found", details={"clientId": client_id})
        return membership

    async def upgrade(
        self, tier_id: int, tenant: TenantContext, client_id: Optional[int] = None
    ) -> dict:
        """
        New subscribers get a suspended membership plus a processor checkout;
        the renewal webhook activates it. Canceled memberships and ones whose
        checkout never completed are reopened with a fresh checkout. Existing
        members switch tier prospectively and the processor plan follows.
        """
        client_id = self._resolve_client_id(tenant, client_id)
        tier = scoped_reference(self.db, MembershipTier, tier_id, tenant, label="MembershipTier")
        if not tier.is_active:
            raise ValidationError("Membership tier is not available", details={"tierId": tier.id})
        client = scoped_reference(self.db, Client, client_id, tenant, label="Client")

        existing = self.repo.get_by_client(self.db, client.id, tenant.organization_id)
        if existing is None or self._needs_checkout(existing):
            return await self._subscribe(client, tier, tenant, existing)
        return await self._switch_tier(existing, tier)

    @staticmethod
    def _needs_checkout(membership: Membership) -> bool:
        """Canceled, or still waiting on the first checkout to complete"""
        if membership.status == MembershipStatus.CANCELED.value:
            return True
        return (
            membership.status == MembershipStatus.SUSPENDED.value
            and not membership.processor_subscription_id
        )

    async def _subscribe(
        self,
        client: Client,
        tier: MembershipTier,
        tenant: TenantContext,
        existing: Optional[Membership] = None,
    ) -> dict:
        if not tier.processor_product_id:
            raise ValidationError("Membership tier has no billing product configured")
        if not self.payments.is_available():
            raise ProcessorError("Payment processor is not configured", code="ProcessorUnavailable")

        def create() -> Membership:
            return self.repo.add(
                self.db,
                Membership(
                    organization_id=tenant.organization_id,
                    client_id=client.id,
                    tier_id=tier.id,
                    status=MembershipStatus.SUSPENDED.value,
                    monthly_credits=tier.monthly_credits,
                    used_credits=0.0,
                    auto_renew=True,
                ),
            )

        def reopen() -> Membership:
            # The client row is unique, so a returning member reuses it. The old
            # subscription binding is dropped so the new checkout can claim it.
            membership = self.repo.get_for_update(self.db, existing.id)
            if membership.tier_id != tier.id:
                self.ledger.change_tier(membership.id, tier)
            membership.status = MembershipStatus.SUSPENDED.value
            membership.auto_renew = True
            membership.processor_subscription_id = None
            membership.current_period_start = None
            self.db.flush()
            return membership

        if existing is None:
            membership = await run_in_transaction_async(self.db, create, "create membership")
            logger.info(f"📥 Membership {membership.id} created (pending payment) for client {client.id}")
        else:
            membership = await run_in_transaction_async(self.db, reopen, "reopen membership")
            logger.info(f"🔁 Membership {membership.id} reopened (pending payment) for client {client.id}")

        # A failed checkout leaves the membership pending; the next upgrade call retries it
        session = await self.payments.create_checkout_session(
            product_id=tier.processor_product_id,
            customer_email=client.email or f"client-{client.id}@unknown.invalid",
            customer_name=client.name,
            return_url=f"{FRONTEND_URL}/memberships/complete",
            metadata={
                "membership_id": membership.id,
                "organization_id": tenant.organization_id,
                "client_id": client.id,
            },
        )
        return {
            "membership": membership,
            "checkout_url": session.get("checkout_url"),
            "session_id": session.get("session_id"),
            "message": "Complete checkout to activate your membership",
        }

    async def _switch_tier(self, membership: Membership, tier: MembershipTier) -> dict:
        if membership.tier_id == tier.id:
            raise ConflictError("Membership is already on this tier", details={"tierId": tier.id})

        if membership.processor_subscription_id and tier.processor_product_id:
            await self.payments.change_plan(membership.processor_subscription_id, tier.processor_product_id)

        membership = await run_in_transaction_async(
            self.db, lambda: self.ledger.change_tier(membership.id, tier), "change membership tier"
        )
        return {
            "membership": membership,
            "checkout_url": None,
            "session_id": None,
            "message": f"Membership moved to {tier.name}",
        }

    async def cancel(self, tenant: TenantContext, client_id: Optional[int] = None) -> Membership:
        """
        Stop auto-renewal. The membership stays usable until end_date; the
        processor's cancellation webhook sets the canceled status.
        """
        membership = self.get_membership(tenant, client_id)
        if membership.status == MembershipStatus.CANCELED.value:
            raise ConflictError("Membership is already canceled")
        if not membership.auto_renew:
            raise ConflictError("Membership is already set to end at the current period")

        if membership.processor_subscription_id:
            await self.payments.cancel_at_period_end(membership.processor_subscription_id)

        def work() -> Membership:
            locked = self.repo.get_for_update(self.db, membership.id)
            locked.auto_renew = False
            self.db.flush()
            return locked

        membership = await run_in_transaction_async(self.db, work, "cancel membership")
        logger.info(f"🛑 Membership {membership.id} will not renew")
        return membership
