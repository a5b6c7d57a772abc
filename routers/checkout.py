# routers/checkout.py

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.commission_service import record_checkout_session
from app.db import get_db
from models.creators import Creator, CreatorStatus
from schemas.creators import CheckoutSessionIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/sessions", status_code=201)
def create_checkout_session(payload: CheckoutSessionIn, db: Session = Depends(get_db)):
    """
    Called by the storefront when a visitor starts a checkout from a
    creator's routine page: maps the cart token to the creator so the
    paid order can be attributed even without cart attributes.
    """
    cart_token = payload.cart_token.strip()
    if not cart_token:
        raise HTTPException(status_code=400, detail="cart_token is required.")

    creator = (
        db.query(Creator)
        .filter(Creator.id == payload.creator_id, Creator.status == CreatorStatus.ACTIVE)
        .first()
    )
    if not creator:
        raise HTTPException(status_code=404, detail="Creator not found.")

    row = record_checkout_session(
        db,
        cart_token=cart_token,
        creator_id=creator.id,
        routine_id=payload.routine_id,
        variant=payload.variant,
    )
    logger.info("CHECKOUT: session recorded cart_token=%s creator_id=%s", cart_token, creator.id)
    return {"ok": True, "cart_token": row.cart_token, "creator_id": row.creator_id}
