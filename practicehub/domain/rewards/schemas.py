"""Rewards domain schemas - Pydantic models for validation"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class RewardTier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"


class RedeemRequest(BaseModel):
    optionId: int
    clientId: Optional[int] = None  # staff redeeming on behalf of a client


class RewardEntryResponse(BaseModel):
    id: int
    points: int
    reason: str
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RewardOptionResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    points_cost: int
    discount_value: Optional[float] = None
    category: Optional[str] = None

    class Config:
        from_attributes = True


class RewardBalanceResponse(BaseModel):
    clientId: int
    balance: int
    tier: RewardTier
    nextTier: Optional[RewardTier] = None
    pointsToNextTier: Optional[int] = None


class RedeemResponse(BaseModel):
    entry: RewardEntryResponse
    balance: int
    message: str
