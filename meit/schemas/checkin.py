from typing import List, Optional

from uuid import UUID

from pydantic import BaseModel, Field

from meit.schemas.points import GiftCardIssued


class CheckinCreate(BaseModel):
    phone: str = Field(min_length=7, max_length=25)
    branch_id: Optional[UUID] = None
    name: Optional[str] = Field(default=None, max_length=200)


class CheckinOut(BaseModel):
    checkin_id: UUID
    customer_id: UUID
    phone: str
    visits_count: int
    points_earned: int
    points_balance: int
    gift_card: Optional[GiftCardIssued] = None
    challenges_completed: List[UUID] = []
