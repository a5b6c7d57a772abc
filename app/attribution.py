# app/attribution.py

"""
Attribution cascade: which creator referred an order.

Signals are tried in strict descending priority and the first eligible hit
wins:

    3  cart_attributes  explicit creator_id note-attribute set at checkout
    2  cart_id          cart token recorded in checkout_sessions
    1  discount_code    applied discount code matching a creator's code

Explicit signals outrank inferred ones. A hit pointing at an unknown or
inactive creator is not eligible and the cascade moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models.checkout_sessions import CheckoutSession
from models.creators import Creator, CreatorStatus

logger = logging.getLogger(__name__)

SOURCE_CART_ATTRIBUTES = "cart_attributes"
SOURCE_CART_ID = "cart_id"
SOURCE_DISCOUNT_CODE = "discount_code"

PRIORITY_CART_ATTRIBUTES = 3
PRIORITY_CART_ID = 2
PRIORITY_DISCOUNT_CODE = 1


@dataclass(frozen=True)
class Attribution:
    creator_id: Optional[int] = None
    routine_id: Optional[str] = None
    variant: Optional[str] = None
    source: Optional[str] = None
    priority: int = 0

    @classmethod
    def none(cls) -> "Attribution":
        return cls()

    @property
    def found(self) -> bool:
        return self.creator_id is not None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _note_attribute(order: dict, name: str) -> Optional[str]:
    for attr in order.get("note_attributes") or []:
        if not isinstance(attr, dict):
            continue
        if attr.get("name") == name:
            value = attr.get("value")
            if value not in (None, ""):
                return str(value).strip()
    return None


def _discount_codes(order: dict) -> list[str]:
    codes = []
    for d in order.get("discount_codes") or []:
        code = d.get("code") if isinstance(d, dict) else d
        if code:
            codes.append(str(code).strip().upper())
    return [c for c in codes if c]


class AttributionResolver:
    def __init__(self, db: Session):
        self.db = db

    def _active_creator(self, creator_id: Any) -> Optional[Creator]:
        try:
            cid = int(creator_id)
        except (TypeError, ValueError):
            return None
        return (
            self.db.query(Creator)
            .filter(Creator.id == cid, Creator.status == CreatorStatus.ACTIVE)
            .first()
        )

    def resolve(self, order: dict, request_id: Optional[str] = None) -> Attribution:
        order_id = order.get("id")

        # Priority 3: cart attributes
        creator_attr = _note_attribute(order, "creator_id")
        if creator_attr:
            creator = self._active_creator(creator_attr)
            if creator:
                logger.info(
                    "ATTRIBUTION: cart_attributes (P3) order_id=%s creator_id=%s request_id=%s",
                    order_id,
                    creator.id,
                    request_id,
                )
                return Attribution(
                    creator_id=creator.id,
                    routine_id=_note_attribute(order, "routine_id"),
                    variant=_note_attribute(order, "routine_variant"),
                    source=SOURCE_CART_ATTRIBUTES,
                    priority=PRIORITY_CART_ATTRIBUTES,
                )
            logger.warning(
                "ATTRIBUTION: cart creator_id=%s not eligible, falling through order_id=%s request_id=%s",
                creator_attr,
                order_id,
                request_id,
            )

        # Priority 2: cart token -> recorded checkout session
        cart_token = order.get("cart_token")
        if cart_token:
            session_row = (
                self.db.query(CheckoutSession)
                .filter(CheckoutSession.cart_token == str(cart_token))
                .first()
            )
            if session_row and session_row.creator_id:
                creator = self._active_creator(session_row.creator_id)
                if creator:
                    logger.info(
                        "ATTRIBUTION: cart_id (P2) order_id=%s cart_token=%s creator_id=%s request_id=%s",
                        order_id,
                        cart_token,
                        creator.id,
                        request_id,
                    )
                    return Attribution(
                        creator_id=creator.id,
                        routine_id=session_row.routine_id,
                        variant=session_row.variant,
                        source=SOURCE_CART_ID,
                        priority=PRIORITY_CART_ID,
                    )

        # Priority 1: discount code (case-insensitive)
        codes = _discount_codes(order)
        if codes:
            creator = (
                self.db.query(Creator)
                .filter(
                    func.upper(Creator.discount_code).in_(codes),
                    Creator.status == CreatorStatus.ACTIVE,
                )
                .order_by(Creator.id.asc())
                .first()
            )
            if creator:
                logger.info(
                    "ATTRIBUTION: discount_code (P1) order_id=%s code=%s creator_id=%s request_id=%s",
                    order_id,
                    creator.discount_code,
                    creator.id,
                    request_id,
                )
                return Attribution(
                    creator_id=creator.id,
                    source=SOURCE_DISCOUNT_CODE,
                    priority=PRIORITY_DISCOUNT_CODE,
                )

        logger.info("ATTRIBUTION: none order_id=%s request_id=%s", order_id, request_id)
        return Attribution.none()
