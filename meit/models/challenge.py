import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class Challenge(Base):
    __tablename__ = "challenges"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False)

    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)

    challenge_type = Column(String(20), nullable=False)
    # packed integer, see services/challenge_codec.py
    target_value = Column(Integer, nullable=False, default=0)
    category = Column(String(100), nullable=True)

    points = Column(Integer, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    is_repeatable = Column(Boolean, nullable=False, default=True)
    max_completions_per_day = Column(Integer, nullable=True)
    max_completions_total = Column(Integer, nullable=True)

    start_date = Column(TIMESTAMP, nullable=True)
    end_date = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
