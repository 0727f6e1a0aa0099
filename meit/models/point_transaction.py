import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


# sign applied to the stored magnitude when summing the ledger
TRANSACTION_SIGNS = {
    "earn": 1,
    "adjustment_add": 1,
    "redeem": -1,
    "adjustment_subtract": -1,
}


class PointTransaction(Base):
    __tablename__ = "point_transactions"

    __table_args__ = (UniqueConstraint("merchant_id", "request_id", name="uq_point_transactions_merchant_id_request_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False)

    transaction_type = Column(String(30), nullable=False)
    points = Column(Integer, nullable=False)  # always a positive magnitude

    # False for memo rows (gift card redemption record), excluded from the balance
    affects_balance = Column(Boolean, nullable=False, default=True)

    reference_type = Column(String(50), nullable=True)  # purchase / checkin / gift_card / manual_adjustment
    reference_id = Column(UUID(as_uuid=True), nullable=True)
    description = Column(String(500), nullable=True)

    request_id = Column(String(150), nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(TIMESTAMP, server_default=func.now())

    @property
    def signed_points(self) -> int:
        return TRANSACTION_SIGNS[self.transaction_type] * int(self.points)
