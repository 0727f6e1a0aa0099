import uuid

from sqlalchemy import Boolean, Column, ForeignKey, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class Branch(Base):
    __tablename__ = "branches"

    __table_args__ = (UniqueConstraint("merchant_id", "qr_code", name="uq_branches_merchant_id_qr_code"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False)

    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    qr_code = Column(String(100), nullable=False)

    active = Column(Boolean, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
