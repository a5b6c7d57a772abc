# routers/payouts_admin.py

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.commission_service import CommissionService
from app.db import get_db
from app.deps import get_commission_service, get_ledger, get_notifier, get_payout_service
from app.ledger import CommissionLedger
from app.notification_service import Notifier
from app.payout_service import PayoutBatchService
from models.admin import Admin
from models.commissions import Commission, CommissionStatus
from models.notifications import AuditLog
from routers.auth_admin import get_current_admin
from schemas.creators import CommissionOut
from schemas.payouts import AuditLogOut, BatchCreate, CommissionLockIn, PromoteIn

router = APIRouter(
    prefix="/admin/payouts",
    tags=["Admin Payouts"],
)


# ---------------------------------------------------------
# BATCHES
# ---------------------------------------------------------
@router.get("/batches")
def list_batches(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: PayoutBatchService = Depends(get_payout_service),
    admin: Admin = Depends(get_current_admin),
):
    batches = service.list_batches(limit=limit, offset=offset)
    return [
        {
            "batch_id": b.id,
            "status": b.status,
            "note": b.note,
            "item_count": len(b.items),
            "total_amount": str(b.total_amount),
            "created_by": b.created_by,
            "approved_by": b.approved_by,
            "executed_by": b.executed_by,
            "created_at": b.created_at,
        }
        for b in batches
    ]


@router.post("/batches", status_code=201)
def create_batch(
    payload: BatchCreate,
    service: PayoutBatchService = Depends(get_payout_service),
    admin: Admin = Depends(get_current_admin),
):
    batch = service.create_batch(
        created_by=admin.actor_label,
        creator_ids=payload.creator_ids,
        note=payload.note,
    )
    return service.batch_summary(batch)


@router.get("/batches/{batch_id}")
def get_batch(
    batch_id: int,
    service: PayoutBatchService = Depends(get_payout_service),
    admin: Admin = Depends(get_current_admin),
):
    """Batch detail. Item failure reasons are returned verbatim."""
    return service.batch_summary(service.get_batch(batch_id))


@router.delete("/batches/{batch_id}/items/{item_id}")
def remove_batch_item(
    batch_id: int,
    item_id: int,
    service: PayoutBatchService = Depends(get_payout_service),
    admin: Admin = Depends(get_current_admin),
):
    batch = service.remove_item(batch_id, item_id, actor=admin.actor_label)
    return service.batch_summary(batch)


@router.post("/batches/{batch_id}/approve")
def approve_batch(
    batch_id: int,
    service: PayoutBatchService = Depends(get_payout_service),
    admin: Admin = Depends(get_current_admin),
):
    return service.approve_batch(batch_id, approved_by=admin.actor_label)


@router.post("/batches/{batch_id}/execute")
def execute_batch(
    batch_id: int,
    service: PayoutBatchService = Depends(get_payout_service),
    admin: Admin = Depends(get_current_admin),
):
    """Safe to call again after a timeout: a retried pass never re-sends a transfer."""
    return service.execute_batch(batch_id, executed_by=admin.actor_label)


# ---------------------------------------------------------
# COMMISSIONS
# ---------------------------------------------------------
@router.get("/commissions", response_model=List[CommissionOut])
def list_commissions(
    status: Optional[CommissionStatus] = None,
    creator_id: Optional[int] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    q = db.query(Commission)
    if status is not None:
        q = q.filter(Commission.status == status)
    if creator_id is not None:
        q = q.filter(Commission.creator_id == creator_id)
    return q.order_by(Commission.id.desc()).offset(offset).limit(limit).all()


@router.post("/commissions/promote-matured")
def promote_matured(
    payload: Optional[PromoteIn] = None,
    service: CommissionService = Depends(get_commission_service),
    admin: Admin = Depends(get_current_admin),
):
    promoted = service.promote_matured_commissions(now=payload.now if payload else None)
    return {"promoted": promoted}


@router.post("/commissions/{commission_id}/lock", response_model=CommissionOut)
def lock_commission(
    commission_id: int,
    payload: CommissionLockIn,
    service: CommissionService = Depends(get_commission_service),
    admin: Admin = Depends(get_current_admin),
):
    return service.lock_commission(
        commission_id,
        until=payload.until,
        actor=admin.actor_label,
        reason=payload.reason,
    )


# ---------------------------------------------------------
# REPORTING / MAINTENANCE
# ---------------------------------------------------------
@router.get("/summary")
def financial_summary(
    ledger: CommissionLedger = Depends(get_ledger),
    admin: Admin = Depends(get_current_admin),
):
    return ledger.financial_summary()


@router.post("/notifications/backfill")
def backfill_notifications(
    notifier: Notifier = Depends(get_notifier),
    admin: Admin = Depends(get_current_admin),
):
    created = notifier.backfill_missing_notifications()
    notifier.audit("NOTIFICATION_BACKFILL", "creator_notification", None, actor=admin.actor_label, details={"created": created})
    return {"created": created}


@router.get("/audit-logs", response_model=List[AuditLogOut])
def list_audit_logs(
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    q = db.query(AuditLog)
    if action:
        q = q.filter(AuditLog.action == action)
    if resource_type:
        q = q.filter(AuditLog.resource_type == resource_type)
    return q.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()
