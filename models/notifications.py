# models/notifications.py

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, JSON, Text
from sqlalchemy.sql import func

from models import Base


class CreatorNotification(Base):
    __tablename__ = "creator_notifications"

    id = Column(Integer, primary_key=True, index=True)

    creator_id = Column(Integer, ForeignKey("creators.id"), nullable=False, index=True)

    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)

    # Link to the ledger entry it announces (used by the backfill)
    ledger_entry_id = Column(Integer, ForeignKey("financial_ledger.id"), nullable=True, unique=True)

    read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AuditLog(Base):
    """Append-only admin audit trail."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    actor = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(100), nullable=True)

    details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
