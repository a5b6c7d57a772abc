# schemas/creators.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from models.commissions import CommissionStatus
from models.creators import CreatorStatus
from models.ledger import TransactionType


class CreatorCreate(BaseModel):
    name: str
    email: EmailStr
    # Fraction: 0.15 = 15%
    commission_rate: Decimal = Field(ge=0, le=1)
    discount_code: Optional[str] = None
    payout_destination: Optional[str] = None
    bank_verified: bool = False


class CreatorUpdate(BaseModel):
    name: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    discount_code: Optional[str] = None
    status: Optional[CreatorStatus] = None
    payout_destination: Optional[str] = None
    bank_verified: Optional[bool] = None


class CreatorOut(BaseModel):
    id: int
    name: str
    email: EmailStr
    commission_rate: Decimal
    discount_code: Optional[str] = None
    status: CreatorStatus
    payout_destination: Optional[str] = None
    bank_verified: bool
    ledger_frozen: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CheckoutSessionIn(BaseModel):
    cart_token: str
    creator_id: int
    routine_id: Optional[str] = None
    variant: Optional[str] = None


class LedgerAdjustmentIn(BaseModel):
    # Signed: negative to debit the creator
    amount: Decimal
    description: str = Field(min_length=3, max_length=500)


class LedgerEntryOut(BaseModel):
    id: int
    entry_number: int
    transaction_type: TransactionType
    amount: Decimal
    balance_after: Decimal
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CommissionOut(BaseModel):
    id: int
    order_id: int
    creator_id: int
    order_total: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    status: CommissionStatus
    lock_until: datetime | None = None
    routine_id: Optional[str] = None
    paid_at: datetime | None = None
    canceled_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: Optional[str] = None
    amount: Optional[Decimal] = None
    read: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BalanceOut(BaseModel):
    creator_id: int
    balance: Decimal
    currency: str = "EUR"
