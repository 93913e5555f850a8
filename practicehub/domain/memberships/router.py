"""Membership router - FastAPI endpoints for membership operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_tenant_context
from ...database import get_db
from ...tenant import TenantContext
from ..billing.payments_service import PaymentsProcessorService, get_payments_service
from .repository import MembershipRepository
from .schemas import (
    MembershipCancelRequest,
    MembershipResponse,
    MembershipTierResponse,
    MembershipUpgradeRequest,
    MembershipUpgradeResponse,
)
from .service import MembershipService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/memberships", tags=["Memberships"])


def get_membership_service(
    db: Session = Depends(get_db),
    payments: PaymentsProcessorService = Depends(get_payments_service),
) -> MembershipService:
    """Dependency injection for MembershipService"""
    return MembershipService(db, payments)


@router.get("/tiers", response_model=list[MembershipTierResponse])
async def list_tiers(
    tenant: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Active membership tiers offered by the organization"""
    return MembershipRepository.list_active_tiers(db, tenant.organization_id)


@router.get("/me", response_model=MembershipResponse)
async def get_my_membership(
    clientId: Optional[int] = Query(None),
    tenant: TenantContext = Depends(get_tenant_context),
    service: MembershipService = Depends(get_membership_service),
):
    """Current membership with remaining credits for this cycle"""
    return MembershipResponse.from_model(service.get_membership(tenant, clientId))


@router.post("/upgrade", response_model=MembershipUpgradeResponse)
async def upgrade_membership(
    data: MembershipUpgradeRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    service: MembershipService = Depends(get_membership_service),
):
    """Subscribe to a tier or switch the current membership's tier"""
    result = await service.upgrade(data.tierId, tenant, data.clientId)
    return MembershipUpgradeResponse(
        membership=MembershipResponse.from_model(result["membership"]),
        checkoutUrl=result["checkout_url"],
        sessionId=result["session_id"],
        message=result["message"],
    )


@router.post("/cancel", response_model=MembershipResponse)
async def cancel_membership(
    data: MembershipCancelRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    service: MembershipService = Depends(get_membership_service),
):
    """Turn off auto-renew; credits remain usable until the period ends"""
    membership = await service.cancel(tenant, data.clientId)
    return MembershipResponse.from_model(membership)
