from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from uuid import UUID

from pydantic import BaseModel, Field


class AssignPointsRequest(BaseModel):
    customer_id: UUID
    amount: Decimal
    challenge_ids: Optional[List[UUID]] = None
    categories: Optional[List[str]] = None


class GiftCardIssued(BaseModel):
    code: str
    value: Decimal
    expires_at: datetime


class AssignPointsResponse(BaseModel):
    points_earned: int
    base_points: int
    bonus_points: int
    total_points: int
    gift_card: Optional[GiftCardIssued] = None
    challenges_completed: List[UUID] = []


class AdjustPointsRequest(BaseModel):
    customer_id: UUID
    points: int
    reason: str = Field(min_length=1, max_length=500)


class AdjustPointsResponse(BaseModel):
    success: bool = True
    adjustment: int
    previous_balance: int
    new_balance: int


class PointTransactionOut(BaseModel):
    id: UUID
    customer_id: UUID
    merchant_id: UUID

    transaction_type: str
    points: int
    affects_balance: bool

    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    description: Optional[str] = None

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BalanceOut(BaseModel):
    customer_id: UUID
    merchant_id: UUID
    points_balance: int
    visits_count: int
    last_visit_at: Optional[datetime] = None


class BalanceVerificationOut(BaseModel):
    customer_id: UUID
    merchant_id: UUID
    stored_balance: int
    ledger_balance: int
    consistent: bool
