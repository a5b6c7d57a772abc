# schemas/shopify.py

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Union

from pydantic import BaseModel


class NoteAttribute(BaseModel):
    name: str
    value: Optional[Any] = None


class DiscountCode(BaseModel):
    code: str
    amount: Optional[str] = None
    type: Optional[str] = None


class ShopifyCustomer(BaseModel):
    id: Optional[Union[int, str]] = None
    email: Optional[str] = None

    class Config:
        extra = "ignore"


class ShopifyOrderPayload(BaseModel):
    """Subset of the Shopify order webhook body used by attribution / commissions."""

    id: Union[int, str]
    order_number: Optional[Union[int, str]] = None
    name: Optional[str] = None

    email: Optional[str] = None
    customer: Optional[ShopifyCustomer] = None

    subtotal_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None
    currency: Optional[str] = None
    financial_status: Optional[str] = None

    note_attributes: List[NoteAttribute] = []
    discount_codes: List[DiscountCode] = []

    cart_token: Optional[str] = None
    checkout_token: Optional[str] = None

    created_at: Optional[datetime] = None

    class Config:
        extra = "ignore"

    @property
    def customer_email(self) -> Optional[str]:
        if self.customer and self.customer.email:
            return self.customer.email
        return self.email

    @property
    def first_discount_code(self) -> Optional[str]:
        return self.discount_codes[0].code if self.discount_codes else None


class ShopifyRefundPayload(BaseModel):
    id: Union[int, str]
    order_id: Union[int, str]
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        extra = "ignore"


class ShopifyCheckoutPayload(BaseModel):
    id: Optional[Union[int, str]] = None
    token: Optional[str] = None
    cart_token: Optional[str] = None

    class Config:
        extra = "ignore"
