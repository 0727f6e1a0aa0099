import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, TIMESTAMP, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class CustomerMerchant(Base):
    __tablename__ = "customer_merchants"

    __table_args__ = (
        UniqueConstraint("customer_id", "merchant_id", name="uq_customer_merchants_customer_id_merchant_id"),
        CheckConstraint("points_balance >= 0", name="ck_customer_merchants_points_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False)

    # only ever changed through relative UPDATEs, see ledger_service
    points_balance = Column(Integer, nullable=False, default=0)
    visits_count = Column(Integer, nullable=False, default=0)
    last_visit_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
