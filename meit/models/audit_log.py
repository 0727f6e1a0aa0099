import uuid

from sqlalchemy import Column, JSON, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from meit.db import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    actor_id = Column(String(100), nullable=True)
    merchant_id = Column(UUID(as_uuid=True), nullable=True)

    action = Column(String(50), nullable=False)  # create / update / redeem / ...
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=True)

    data = Column(JSON, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
