# models/payout_batches.py

from decimal import Decimal
from typing import Iterable

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from models import Base


class BatchPhase(str, enum.Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    EXECUTING = "executing"


class PayoutItemStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_ITEM_STATUSES = {
    PayoutItemStatus.COMPLETED,
    PayoutItemStatus.FAILED,
    PayoutItemStatus.SKIPPED,
}

# Pending, processing and completed items hold their commission (enum names are stored)
OPEN_ITEM_PREDICATE = "status IN ('PENDING', 'PROCESSING', 'COMPLETED')"


def derive_batch_status(phase: BatchPhase, item_statuses: Iterable[PayoutItemStatus]) -> str:
    """
    Batch status as seen by the outside world.

    draft / approved come from the explicit admin actions. Once executing,
    the status is a function of the items only:
      - executing  while any item is pending / processing
      - completed  every item completed
      - failed     no item completed
      - partial    anything else
    """
    if phase != BatchPhase.EXECUTING:
        return phase.value

    statuses = list(item_statuses)
    if not statuses or any(s not in TERMINAL_ITEM_STATUSES for s in statuses):
        return "executing"
    if all(s == PayoutItemStatus.COMPLETED for s in statuses):
        return "completed"
    if not any(s == PayoutItemStatus.COMPLETED for s in statuses):
        return "failed"
    return "partial"


class PayoutBatch(Base):
    __tablename__ = "payout_batches"

    id = Column(Integer, primary_key=True, index=True)

    # Only the admin-driven phase is stored; terminal status is derived
    phase = Column(Enum(BatchPhase, name="payout_batch_phase"), nullable=False, default=BatchPhase.DRAFT)

    note = Column(String(255), nullable=True)

    created_by = Column(String(255), nullable=True)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    executed_by = Column(String(255), nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship(
        "PayoutBatchItem",
        back_populates="batch",
        order_by="PayoutBatchItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def status(self) -> str:
        return derive_batch_status(self.phase, (i.status for i in self.items))

    @property
    def total_amount(self):
        return sum((i.amount for i in self.items), Decimal("0.00"))


class PayoutBatchItem(Base):
    __tablename__ = "payout_batch_items"
    __table_args__ = (
        UniqueConstraint("batch_id", "commission_id", name="uq_payout_batch_items_batch_commission"),
        Index(
            "uq_payout_batch_items_open_commission",
            "commission_id",
            unique=True,
            sqlite_where=text(OPEN_ITEM_PREDICATE),
            postgresql_where=text(OPEN_ITEM_PREDICATE),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    batch_id = Column(Integer, ForeignKey("payout_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    commission_id = Column(Integer, ForeignKey("commissions.id"), nullable=False, index=True)
    creator_id = Column(Integer, ForeignKey("creators.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    fee = Column(Numeric(12, 2), nullable=False, server_default=text("0"))
    net_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(
        Enum(PayoutItemStatus, name="payout_item_status"),
        nullable=False,
        default=PayoutItemStatus.PENDING,
    )

    transfer_id = Column(String(255), nullable=True)
    # Shown verbatim to admins for remediation
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    batch = relationship("PayoutBatch", back_populates="items")
    commission = relationship("Commission")
    creator = relationship("Creator")
