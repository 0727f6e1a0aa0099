from datetime import datetime
from decimal import Decimal
from typing import Optional

from uuid import UUID

from pydantic import BaseModel, Field


class GiftCardCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)


class RedeemGiftCardRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    amount: Optional[Decimal] = None


class RedeemGiftCardResponse(BaseModel):
    success: bool = True
    redeemed_value: Decimal
    remaining_value: Decimal = Decimal("0")


class ValidateGiftCardResponse(BaseModel):
    valid: bool
    code: Optional[str] = None
    value: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    customer_id: Optional[UUID] = None
    error: Optional[str] = None


class GiftCardOut(BaseModel):
    id: UUID
    code: str
    customer_id: UUID
    merchant_id: UUID

    points_cost: int
    reward_value: Decimal
    status: str

    expires_at: datetime
    redeemed_at: Optional[datetime] = None
    redeemed_by: Optional[str] = None

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
