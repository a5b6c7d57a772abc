from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, Boolean
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
import enum

from models import Base


class CreatorStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Creator(Base):
    __tablename__ = "creators"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(150), nullable=False)
    email = Column(String(255), nullable=False, unique=True)

    # Fraction, e.g. 0.15 = 15%. Commissions copy it at creation time.
    commission_rate = Column(Numeric(5, 4), nullable=False)

    # Discount code used for priority-1 attribution (stored upper-case)
    discount_code = Column(String(100), nullable=True, unique=True)

    status = Column(Enum(CreatorStatus, name="creator_status"), nullable=False, default=CreatorStatus.ACTIVE)

    # IBAN or payment rail account id
    payout_destination = Column(String(100), nullable=True)
    bank_verified = Column(Boolean, nullable=False, default=False)

    # Set when a ledger integrity check fails: no more ledger writes until reconciled
    ledger_frozen = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @validates("discount_code")
    def _normalize_code(self, key, value):
        if value is None:
            return None
        value = value.strip().upper()
        return value or None

    @property
    def is_active(self) -> bool:
        return self.status == CreatorStatus.ACTIVE

    @property
    def is_payable(self) -> bool:
        return self.is_active and bool(self.bank_verified) and bool(self.payout_destination)
