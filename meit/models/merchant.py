import uuid

from sqlalchemy import Boolean, Column, Integer, Numeric, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class Merchant(Base):
    __tablename__ = "merchants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    name = Column(String(200), nullable=False)

    # loyalty configuration, read on every points operation
    points_per_unit = Column(Numeric(10, 4), nullable=False, default=1)
    gift_card_threshold = Column(Integer, nullable=True)
    gift_card_value = Column(Numeric(10, 2), nullable=True)
    gift_card_expiry_days = Column(Integer, nullable=False, default=30)
    gift_card_auto_generate = Column(Boolean, nullable=False, default=True)
    max_active_gift_cards = Column(Integer, nullable=True)  # NULL = unlimited

    timezone = Column(String(64), nullable=False, default="UTC")

    active = Column(Boolean, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
