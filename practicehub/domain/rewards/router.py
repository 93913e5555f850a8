"""Rewards router - FastAPI endpoints for points balance and redemption"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_tenant_context
from ...database import get_db
from ...exceptions import PermissionDenied, ValidationError
from ...models import Client
from ...shared.retry import run_in_transaction
from ...tenant import TenantContext, scoped_reference
from .ledger import RewardsLedger, next_tier, tier_for_balance
from .repository import RewardsRepository
from .schemas import (
    RedeemRequest,
    RedeemResponse,
    RewardBalanceResponse,
    RewardEntryResponse,
    RewardOptionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rewards", tags=["Rewards"])


def get_rewards_ledger(db: Session = Depends(get_db)) -> RewardsLedger:
    """Dependency injection for RewardsLedger"""
    return RewardsLedger(db)


def _resolve_client(ledger: RewardsLedger, tenant: TenantContext, client_id: Optional[int]) -> int:
    if tenant.is_client:
        if tenant.client_id is None or (client_id is not None and client_id != tenant.client_id):
            raise PermissionDenied("Clients can only access their own rewards")
        return tenant.client_id
    if client_id is None:
        raise ValidationError("clientId is required")
    return scoped_reference(ledger.db, Client, client_id, tenant, label="Client").id


# ============================================================================
# BALANCE & HISTORY
# ============================================================================


@router.get("/balance", response_model=RewardBalanceResponse)
async def get_balance(
    clientId: Optional[int] = Query(None),
    tenant: TenantContext = Depends(get_tenant_context),
    ledger: RewardsLedger = Depends(get_rewards_ledger),
):
    """Points balance with the tier it currently qualifies for"""
    client_id = _resolve_client(ledger, tenant, clientId)
    balance = ledger.balance(client_id)
    upcoming, needed = next_tier(balance)
    return RewardBalanceResponse(
        clientId=client_id,
        balance=balance,
        tier=tier_for_balance(balance),
        nextTier=upcoming,
        pointsToNextTier=needed,
    )


@router.get("/history", response_model=list[RewardEntryResponse])
async def get_history(
    clientId: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    tenant: TenantContext = Depends(get_tenant_context),
    ledger: RewardsLedger = Depends(get_rewards_ledger),
):
    client_id = _resolve_client(ledger, tenant, clientId)
    return ledger.history(client_id, limit)


# ============================================================================
# REDEMPTION
# ============================================================================


@router.get("/options", response_model=list[RewardOptionResponse])
async def list_options(
    tenant: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Active reward catalog for the organization"""
    return RewardsRepository.list_active_options(db, tenant.organization_id)


@router.post("/redeem", response_model=RedeemResponse)
def redeem_reward(
    data: RedeemRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    ledger: RewardsLedger = Depends(get_rewards_ledger),
):
    """Spend points on a reward option"""
    client_id = _resolve_client(ledger, tenant, data.clientId)
    entry = run_in_transaction(
        ledger.db, lambda: ledger.redeem(client_id, data.optionId, tenant), "redeem reward"
    )
    balance = ledger.balance(client_id)
    return RedeemResponse(
        entry=RewardEntryResponse.model_validate(entry),
        balance=balance,
        message=f"{entry.reason} ({-entry.points} points)",
    )
