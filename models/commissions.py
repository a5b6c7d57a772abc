from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Enum,
    ForeignKey,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, validates
import enum

from models import Base
from app.errors import StateTransitionError


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    LOCKED = "locked"
    PAYABLE = "payable"
    PAID = "paid"
    CANCELED = "canceled"


# Monotonic lifecycle; cancellation reachable from any non-paid state
COMMISSION_TRANSITIONS = {
    CommissionStatus.PENDING: {CommissionStatus.LOCKED, CommissionStatus.PAYABLE, CommissionStatus.CANCELED},
    CommissionStatus.LOCKED: {CommissionStatus.PAYABLE, CommissionStatus.CANCELED},
    CommissionStatus.PAYABLE: {CommissionStatus.PAID, CommissionStatus.CANCELED},
    CommissionStatus.PAID: set(),
    CommissionStatus.CANCELED: set(),
}

_FROZEN_FIELDS = ("order_total", "commission_rate", "commission_amount")


class Commission(Base):
    __tablename__ = "commissions"

    id = Column(Integer, primary_key=True, index=True)

    # One commission per order
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    creator_id = Column(Integer, ForeignKey("creators.id"), nullable=False, index=True)

    # Snapshots taken at creation, never recomputed
    order_total = Column(Numeric(12, 2), nullable=False)
    commission_rate = Column(Numeric(5, 4), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(
        Enum(CommissionStatus, name="commission_status"),
        nullable=False,
        default=CommissionStatus.PENDING,
        index=True,
    )

    # Maturity hold (refund window)
    lock_until = Column(DateTime(timezone=True), nullable=True)

    routine_id = Column(String(100), nullable=True)
    routine_variant = Column(String(100), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="commission")

    @validates(*_FROZEN_FIELDS)
    def _freeze_snapshot(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"Commission.{key} is immutable once set")
        return value

    def can_transition_to(self, target: CommissionStatus) -> bool:
        return target in COMMISSION_TRANSITIONS.get(self.status, set())

    def transition_to(self, target: CommissionStatus) -> None:
        if not self.can_transition_to(target):
            current = self.status.value if self.status else None
            raise StateTransitionError(
                f"Illegal commission transition: {current} -> {target.value}",
                current,
                target.value,
            )
        self.status = target
