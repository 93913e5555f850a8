"""Membership domain schemas - Pydantic models for validation"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from ...shared.timezones import ensure_utc


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELED = "canceled"


class MembershipUpgradeRequest(BaseModel):
    """Subscribe to a tier, or move an existing membership to another tier"""

    tierId: int
    clientId: Optional[int] = None  # staff acting on behalf of a client


class MembershipCancelRequest(BaseModel):
    clientId: Optional[int] = None


class MembershipResponse(BaseModel):
    id: int
    clientId: int
    tierId: int
    tierName: Optional[str] = None
    status: MembershipStatus
    monthlyCredits: float
    usedCredits: float
    remainingCredits: float
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    autoRenew: bool

    @classmethod
    def from_model(cls, membership) -> "MembershipResponse":
        return cls(
            id=membership.id,
            clientId=membership.client_id,
            tierId=membership.tier_id,
            tierName=membership.tier.name if membership.tier else None,
            status=membership.status,
            monthlyCredits=membership.monthly_credits,
            usedCredits=membership.used_credits,
            remainingCredits=round(membership.monthly_credits - membership.used_credits, 2),
            startDate=ensure_utc(membership.start_date),
            endDate=ensure_utc(membership.end_date),
            autoRenew=membership.auto_renew,
        )


class MembershipUpgradeResponse(BaseModel):
    membership: MembershipResponse
    checkoutUrl: Optional[str] = None
    sessionId: Optional[str] = None
    message: str


class MembershipTierResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    monthly_price: float
    yearly_price: Optional[float] = None
    monthly_credits: float
    discount_percentage: float
    points_multiplier: float

    class Config:
        from_attributes = True
