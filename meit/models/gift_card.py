import uuid

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class GiftCard(Base):
    __tablename__ = "gift_cards"

    __table_args__ = (UniqueConstraint("merchant_id", "code", name="uq_gift_cards_merchant_id_code"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    code = Column(String(8), nullable=False)

    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False)

    points_cost = Column(Integer, nullable=False)
    reward_value = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default="active")
    # active | redeemed | expired | cancelled

    expires_at = Column(TIMESTAMP, nullable=False)
    redeemed_at = Column(TIMESTAMP, nullable=True)
    redeemed_by = Column(String(100), nullable=True)

    source_transaction_id = Column(UUID(as_uuid=True), ForeignKey("point_transactions.id"), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
