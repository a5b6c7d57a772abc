# routers/admin_creators.py

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps import get_ledger, get_notifier
from app.ledger import CommissionLedger
from app.notification_service import Notifier
from models.admin import Admin
from models.creators import Creator, CreatorStatus
from models.ledger import TransactionType
from routers.auth_admin import get_current_admin
from schemas.creators import CreatorCreate, CreatorOut, CreatorUpdate, LedgerAdjustmentIn, LedgerEntryOut

router = APIRouter(
    prefix="/admin/creators",
    tags=["Admin Creators"],
)

logger = logging.getLogger(__name__)


def parse_bool(val: str | None) -> Optional[bool]:
    """
    Lenient querystring bool: true/false, 1/0, yes/no, y/n, on/off.
    None, empty or unknown -> None (no filter).
    """
    if val is None:
        return None
    s = str(val).strip().lower()
    if s in ("true", "1", "yes", "y", "on"):
        return True
    if s in ("false", "0", "no", "n", "off"):
        return False
    return None


def _get_creator_or_404(db: Session, creator_id: int) -> Creator:
    creator = db.query(Creator).filter(Creator.id == creator_id).first()
    if not creator:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Creator not found.")
    return creator


# ---------------------------------------------------------
# LIST / DETAIL
# ---------------------------------------------------------
@router.get("/", response_model=List[CreatorOut])
def admin_list_creators(
    active: Optional[str] = Query(default=None, description="Filter on status: true/false"),
    db: Session = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    q = db.query(Creator).order_by(Creator.created_at.desc(), Creator.id.desc())

    active_bool = parse_bool(active)
    if active_bool is True:
        q = q.filter(Creator.status == CreatorStatus.ACTIVE)
    elif active_bool is False:
        q = q.filter(Creator.status == CreatorStatus.INACTIVE)

    return q.all()


@router.get("/balances")
def admin_creator_balances(
    db: Session = Depends(get_db),
    ledger: CommissionLedger = Depends(get_ledger),
    admin: Admin = Depends(get_current_admin),
):
    """Current ledger balance of every creator (zero for creators without entries)."""
    balances = ledger.balances_by_creator()
    creators = db.query(Creator).order_by(Creator.name.asc()).all()
    return [
        {
            "creator_id": c.id,
            "name": c.name,
            "email": c.email,
            "status": c.status.value,
            "ledger_frozen": c.ledger_frozen,
            "balance": str(balances.get(c.id, "0.00")),
        }
        for c in creators
    ]


@router.get("/{creator_id}", response_model=CreatorOut)
def admin_get_creator(
    creator_id: int,
    db: Session = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    return _get_creator_or_404(db, creator_id)


# ---------------------------------------------------------
# CREATE / UPDATE
# ---------------------------------------------------------
@router.post("/", response_model=CreatorOut, status_code=status.HTTP_201_CREATED)
def admin_create_creator(
    payload: CreatorCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    admin: Admin = Depends(get_current_admin),
):
    if db.query(Creator).filter(Creator.email == payload.email).first():
        raise HTTPException(status_code=409, detail="A creator with this email already exists.")

    code = (payload.discount_code or "").strip().upper() or None
    if code and db.query(Creator).filter(Creator.discount_code == code).first():
        raise HTTPException(status_code=409, detail="Discount code already assigned to another creator.")

    creator = Creator(
        name=payload.name.strip(),
        email=payload.email,
        commission_rate=payload.commission_rate,
        discount_code=code,
        status=CreatorStatus.ACTIVE,
        payout_destination=payload.payout_destination,
        bank_verified=payload.bank_verified,
        ledger_frozen=False,
    )
    db.add(creator)
    db.commit()
    db.refresh(creator)

    logger.info("CREATOR: created creator_id=%s by=%s", creator.id, admin.actor_label)
    notifier.audit("CREATOR_CREATE", "creator", creator.id, actor=admin.actor_label)
    return creator


@router.patch("/{creator_id}", response_model=CreatorOut)
def admin_update_creator(
    creator_id: int,
    payload: CreatorUpdate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    admin: Admin = Depends(get_current_admin),
):
    """
    Rate changes apply to future commissions only: existing commissions
    keep the rate snapshot taken when they were created.
    """
    creator = _get_creator_or_404(db, creator_id)
    changes = payload.model_dump(exclude_unset=True)

    if "discount_code" in changes and changes["discount_code"]:
        code = changes["discount_code"].strip().upper()
        taken = (
            db.query(Creator)
            .filter(Creator.discount_code == code, Creator.id != creator.id)
            .first()
        )
        if taken:
            raise HTTPException(status_code=409, detail="Discount code already assigned to another creator.")

    for field, value in changes.items():
        setattr(creator, field, value)
    db.commit()
    db.refresh(creator)

    notifier.audit(
        "CREATOR_UPDATE",
        "creator",
        creator.id,
        actor=admin.actor_label,
        details={k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()},
    )
    return creator


# ---------------------------------------------------------
# LEDGER
# ---------------------------------------------------------
@router.get("/{creator_id}/ledger", response_model=List[LedgerEntryOut])
def admin_creator_ledger(
    creator_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    transaction_type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    ledger: CommissionLedger = Depends(get_ledger),
    admin: Admin = Depends(get_current_admin),
):
    _get_creator_or_404(db, creator_id)
    return ledger.get_ledger(creator_id, limit=limit, offset=offset, transaction_type=transaction_type)


@router.post("/{creator_id}/ledger/verify")
def admin_verify_ledger(
    creator_id: int,
    db: Session = Depends(get_db),
    ledger: CommissionLedger = Depends(get_ledger),
    admin: Admin = Depends(get_current_admin),
):
    """Reconciliation check. A mismatch freezes the creator's ledger."""
    _get_creator_or_404(db, creator_id)
    return ledger.verify_integrity(creator_id).as_dict()


@router.post("/{creator_id}/ledger/unfreeze")
def admin_unfreeze_ledger(
    creator_id: int,
    db: Session = Depends(get_db),
    ledger: CommissionLedger = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
    admin: Admin = Depends(get_current_admin),
):
    _get_creator_or_404(db, creator_id)
    report = ledger.verify_integrity(creator_id, freeze=False)
    if not report.ok:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Ledger still inconsistent", "errors": report.errors},
        )
    ledger.unfreeze(creator_id)
    notifier.audit("LEDGER_UNFREEZE", "creator", creator_id, actor=admin.actor_label)
    return {"ok": True, "creator_id": creator_id}


@router.post("/{creator_id}/ledger/adjustments", response_model=LedgerEntryOut, status_code=201)
def admin_ledger_adjustment(
    creator_id: int,
    payload: LedgerAdjustmentIn,
    db: Session = Depends(get_db),
    ledger: CommissionLedger = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
    admin: Admin = Depends(get_current_admin),
):
    """Manual correction: a new signed entry, never an edit of an old one."""
    _get_creator_or_404(db, creator_id)
    try:
        entry = ledger.append(
            creator_id,
            TransactionType.ADJUSTMENT,
            payload.amount,
            payload.description,
            reference_type="admin",
            reference_id=admin.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    notifier.audit(
        "LEDGER_ADJUSTMENT",
        "creator",
        creator_id,
        actor=admin.actor_label,
        details={"amount": entry.amount, "entry_number": entry.entry_number},
    )
    notifier.record_for_entry(entry)
    return entry
