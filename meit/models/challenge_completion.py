import uuid

from sqlalchemy import Column, ForeignKey, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class ChallengeCompletion(Base):
    __tablename__ = "challenge_completions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    challenge_id = Column(UUID(as_uuid=True), ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False)

    point_transaction_id = Column(UUID(as_uuid=True), ForeignKey("point_transactions.id"), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
