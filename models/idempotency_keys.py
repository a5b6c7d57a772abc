from sqlalchemy import Column, Integer, String, DateTime, Enum, JSON, Text
from sqlalchemy.sql import func
import enum

from models import Base


class IdempotencyStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    id = Column(Integer, primary_key=True, index=True)

    # operation prefix + natural key, e.g. order_paid_5550001
    idempotency_key = Column(String(255), nullable=False, unique=True)
    operation_type = Column(String(100), nullable=False)
    resource_type = Column(String(100), nullable=True)

    status = Column(Enum(IdempotencyStatus, name="idempotency_status"), nullable=False)

    response_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    attempts = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    # Refreshed on every claim; drives stale-processing detection
    updated_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
