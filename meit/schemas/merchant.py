from datetime import datetime
from decimal import Decimal
from typing import Optional

from uuid import UUID

from pydantic import BaseModel, Field


class MerchantConfigFields(BaseModel):
    points_per_unit: Decimal = Field(default=Decimal("1"), gt=0)
    gift_card_threshold: int = Field(default=100, gt=0)
    gift_card_value: Decimal = Field(default=Decimal("5"), gt=0)
    gift_card_expiry_days: int = Field(default=30, ge=1, le=3650)
    gift_card_auto_generate: bool = True
    max_active_gift_cards: Optional[int] = Field(default=None, ge=1)
    timezone: str = "UTC"


class MerchantCreate(MerchantConfigFields):
    name: str = Field(min_length=1, max_length=200)


class MerchantConfigUpdate(BaseModel):
    points_per_unit: Optional[Decimal] = Field(default=None, gt=0)
    gift_card_threshold: Optional[int] = Field(default=None, gt=0)
    gift_card_value: Optional[Decimal] = Field(default=None, gt=0)
    gift_card_expiry_days: Optional[int] = Field(default=None, ge=1, le=3650)
    gift_card_auto_generate: Optional[bool] = None
    max_active_gift_cards: Optional[int] = Field(default=None, ge=1)
    timezone: Optional[str] = None


class MerchantOut(BaseModel):
    id: UUID
    name: str

    points_per_unit: Decimal
    gift_card_threshold: Optional[int] = None
    gift_card_value: Optional[Decimal] = None
    gift_card_expiry_days: int
    gift_card_auto_generate: bool
    max_active_gift_cards: Optional[int] = None
    timezone: str

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BranchCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    qr_code: str = Field(min_length=1, max_length=100)


class BranchOut(BaseModel):
    id: UUID
    merchant_id: UUID
    name: str
    address: Optional[str] = None
    qr_code: str
    active: bool

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
