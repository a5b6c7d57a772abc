# routers/creator_portal.py

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.deps import get_ledger
from app.deps_creator import get_current_creator
from app.ledger import CommissionLedger
from app.security import create_creator_token
from models.commissions import Commission
from models.creators import Creator, CreatorStatus
from models.ledger import TransactionType
from models.notifications import CreatorNotification
from schemas.auth import CreatorLoginRequest, TokenResponse
from schemas.creators import BalanceOut, CommissionOut, LedgerEntryOut, NotificationOut

router = APIRouter(prefix="/creator", tags=["Creator Portal"])


@router.post("/login", response_model=TokenResponse)
def creator_login(payload: CreatorLoginRequest, db: Session = Depends(get_db)):
    creator = (
        db.query(Creator)
        .filter(
            Creator.email == payload.email,
            Creator.discount_code == payload.discount_code.strip().upper(),
            Creator.status == CreatorStatus.ACTIVE,
        )
        .first()
    )

    if not creator:
        raise HTTPException(status_code=401, detail="Invalid creator credentials.")

    return TokenResponse(access_token=create_creator_token(creator.id))


@router.get("/me/balance", response_model=BalanceOut)
def my_balance(
    creator: Creator = Depends(get_current_creator),
    ledger: CommissionLedger = Depends(get_ledger),
):
    return BalanceOut(creator_id=creator.id, balance=ledger.get_balance(creator.id), currency=settings.currency)


@router.get("/me/ledger", response_model=List[LedgerEntryOut])
def my_ledger(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    transaction_type: Optional[TransactionType] = None,
    creator: Creator = Depends(get_current_creator),
    ledger: CommissionLedger = Depends(get_ledger),
):
    return ledger.get_ledger(creator.id, limit=limit, offset=offset, transaction_type=transaction_type)


@router.get("/me/commissions", response_model=List[CommissionOut])
def my_commissions(
    creator: Creator = Depends(get_current_creator),
    db: Session = Depends(get_db),
):
    return (
        db.query(Commission)
        .filter(Commission.creator_id == creator.id)
        .order_by(Commission.created_at.desc(), Commission.id.desc())
        .all()
    )


@router.get("/me/notifications", response_model=List[NotificationOut])
def my_notifications(
    unread_only: bool = False,
    creator: Creator = Depends(get_current_creator),
    db: Session = Depends(get_db),
):
    q = db.query(CreatorNotification).filter(CreatorNotification.creator_id == creator.id)
    if unread_only:
        q = q.filter(CreatorNotification.read.is_(False))
    return q.order_by(CreatorNotification.id.desc()).limit(100).all()


@router.post("/me/notifications/{notification_id}/read", response_model=NotificationOut)
def mark_notification_read(
    notification_id: int,
    creator: Creator = Depends(get_current_creator),
    db: Session = Depends(get_db),
):
    notif = (
        db.query(CreatorNotification)
        .filter(
            CreatorNotification.id == notification_id,
            CreatorNotification.creator_id == creator.id,
        )
        .first()
    )
    if not notif:
        raise HTTPException(status_code=404, detail="Notification not found.")

    notif.read = True
    db.commit()
    db.refresh(notif)
    return notif
