from datetime import datetime, time
from typing import Annotated, Literal, Optional, Union

from uuid import UUID

from pydantic import BaseModel, Field


class AmountMinTarget(BaseModel):
    type: Literal["amount_min"] = "amount_min"
    amount: int


class TimeWindowTarget(BaseModel):
    type: Literal["time_based"] = "time_based"
    start: time
    end: time


class FrequencyTarget(BaseModel):
    type: Literal["frequency"] = "frequency"
    visits: int
    days: int


class CategoryTarget(BaseModel):
    type: Literal["category"] = "category"
    category: str


ChallengeTarget = Annotated[
    Union[AmountMinTarget, TimeWindowTarget, FrequencyTarget, CategoryTarget],
    Field(discriminator="type"),
]


class ChallengeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    points: int = Field(ge=1, le=1000)
    target: ChallengeTarget
    is_active: bool = True
    is_repeatable: bool = True
    max_completions_per_day: Optional[int] = Field(default=None, ge=1)
    max_completions_total: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ChallengeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    points: Optional[int] = Field(default=None, ge=1, le=1000)
    target: Optional[ChallengeTarget] = None
    is_active: Optional[bool] = None
    is_repeatable: Optional[bool] = None
    max_completions_per_day: Optional[int] = Field(default=None, ge=1)
    max_completions_total: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ChallengeOut(BaseModel):
    id: UUID
    merchant_id: UUID

    name: str
    description: Optional[str] = None

    challenge_type: str
    target_value: int
    target: ChallengeTarget

    points: int

    is_active: bool
    is_repeatable: bool
    max_completions_per_day: Optional[int] = None
    max_completions_total: Optional[int] = None

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
