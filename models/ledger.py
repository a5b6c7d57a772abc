# models/ledger.py

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    event,
)
from sqlalchemy.sql import func
import enum

from models import Base


class TransactionType(str, enum.Enum):
    COMMISSION_EARNED = "commission_earned"
    COMMISSION_CANCELED = "commission_canceled"
    PAYOUT_SENT = "payout_sent"
    PAYOUT_FEE = "payout_fee"
    ADJUSTMENT = "adjustment"


class LedgerEntry(Base):
    """
    Append-only financial ledger.
    balance_after of entry N == balance_after of entry N-1 + amount of entry N
    (per creator). Corrections are new offsetting entries.
    """
    __tablename__ = "financial_ledger"
    __table_args__ = (
        # Compare-and-set on the chain: two appends computed from the same
        # previous entry cannot both commit.
        UniqueConstraint("creator_id", "entry_number", name="uq_financial_ledger_creator_entry"),
    )

    id = Column(Integer, primary_key=True, index=True)

    creator_id = Column(Integer, ForeignKey("creators.id"), nullable=False, index=True)
    entry_number = Column(Integer, nullable=False)

    transaction_type = Column(Enum(TransactionType, name="ledger_transaction_type"), nullable=False)

    # Signed: credits positive, debits negative
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    description = Column(String(500), nullable=True)

    # What produced the entry (commission / payout_item / ...)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


@event.listens_for(LedgerEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise RuntimeError(f"financial_ledger entries are immutable (id={target.id})")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise RuntimeError(f"financial_ledger entries cannot be deleted (id={target.id})")
