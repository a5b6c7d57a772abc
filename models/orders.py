from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Enum,
    ForeignKey,
    text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from models import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REFUNDED = "refunded"
    CANCELED = "canceled"


# Forward-only ordering for upserts (terminal states handled separately)
ORDER_STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.CANCELED: 2,
    OrderStatus.REFUNDED: 3,
}

TERMINAL_ORDER_STATUSES = {OrderStatus.REFUNDED, OrderStatus.CANCELED}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    # Natural key from the e-commerce platform
    external_order_id = Column(String(100), nullable=False, unique=True)
    order_number = Column(String(50), nullable=True)

    customer_email = Column(String(255), nullable=True)

    # Commission base (excludes shipping / tax)
    subtotal_amount = Column(Numeric(12, 2), nullable=False, server_default=text("0"))
    total_amount = Column(Numeric(12, 2), nullable=False, server_default=text("0"))
    currency = Column(String(3), nullable=False, default="EUR")

    discount_code = Column(String(100), nullable=True)

    # Attribution result (null = unattributed)
    creator_id = Column(Integer, ForeignKey("creators.id"), nullable=True, index=True)
    routine_id = Column(String(100), nullable=True)
    routine_variant = Column(String(100), nullable=True)
    attribution_source = Column(String(30), nullable=True)
    attribution_priority = Column(Integer, nullable=False, default=0)

    status = Column(Enum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.PENDING)

    order_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    commission = relationship("Commission", back_populates="order", uselist=False)
