from datetime import datetime
from typing import Optional

from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class CustomerCreate(BaseModel):
    phone: str = Field(min_length=7, max_length=25)
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[EmailStr] = None
    opt_in_marketing: bool = False


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[EmailStr] = None
    opt_in_marketing: Optional[bool] = None


class CustomerOut(BaseModel):
    id: UUID
    phone: str
    name: Optional[str] = None
    email: Optional[str] = None
    opt_in_marketing: bool

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
