# app/deps.py

"""
Request-scoped wiring of the services. Every collaborator is built per
request around the request's Session; tests swap the payment rail through
app.dependency_overrides[get_payment_rail].
"""

import logging
from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.attribution import AttributionResolver
from app.commission_service import CommissionService, MaturityPolicy
from app.config import settings
from app.db import get_db
from app.idempotency import IdempotencyGate
from app.ledger import CommissionLedger
from app.notification_service import Notifier
from app.payment_rail import PaymentRail, build_payment_rail
from app.payout_service import PayoutBatchService

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _configured_rail() -> PaymentRail:
    return build_payment_rail(settings)


def get_payment_rail() -> PaymentRail:
    try:
        return _configured_rail()
    except RuntimeError as e:
        logger.error("RAIL: not available: %s", e)
        raise HTTPException(status_code=503, detail="Payment rail not configured")


def get_notifier(db: Session = Depends(get_db)) -> Notifier:
    return Notifier(db)


def get_ledger(db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)) -> CommissionLedger:
    return CommissionLedger(db, notifier=notifier)


def get_gate(db: Session = Depends(get_db)) -> IdempotencyGate:
    return IdempotencyGate(db, stale_after_seconds=settings.idempotency_stale_seconds)


def get_commission_service(
    db: Session = Depends(get_db),
    ledger: CommissionLedger = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
    gate: IdempotencyGate = Depends(get_gate),
) -> CommissionService:
    return CommissionService(
        db,
        resolver=AttributionResolver(db),
        ledger=ledger,
        notifier=notifier,
        gate=gate,
        policy=MaturityPolicy(settings.commission_hold_days),
        default_commission_rate=settings.default_commission_rate,
    )


def get_payout_service(
    db: Session = Depends(get_db),
    rail: PaymentRail = Depends(get_payment_rail),
    ledger: CommissionLedger = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
    gate: IdempotencyGate = Depends(get_gate),
) -> PayoutBatchService:
    return PayoutBatchService(
        db,
        rail=rail,
        ledger=ledger,
        notifier=notifier,
        gate=gate,
        settings=settings,
    )
