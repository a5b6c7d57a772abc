from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func

from models import Base


class CheckoutSession(Base):
    """
    Cart token -> creator mapping written by the checkout flow.
    Read-only for attribution (priority 2).
    """
    __tablename__ = "checkout_sessions"

    id = Column(Integer, primary_key=True, index=True)

    cart_token = Column(String(255), nullable=False, unique=True)

    creator_id = Column(Integer, ForeignKey("creators.id"), nullable=True)
    routine_id = Column(String(100), nullable=True)
    variant = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
