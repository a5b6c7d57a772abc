# app/payout_service.py

"""
Payout batch state machine.

    draft -> approved -> executing -> (completed | partial | failed, derived)

Items move pending -> processing -> completed | failed | skipped, one
payment rail call per item. Money leaves only through execute_batch():

- the batch-level key `batch_execute_<id>` allows one execution pass at a time;
- the item-level key `payout_item_<id>` is also sent to the rail, so a
  retried pass never fires a second transfer for the same item;
- a commission is held by at most one pending / processing / completed item
  (partial unique index), so two batches cannot both send it;
- the item is marked `processing` and committed before the rail is called;
- ledger entries and the commission -> paid transition are committed with
  the item -> completed transition, in one transaction. A commission
  canceled while its transfer was in flight stays canceled and gets a
  clawback entry next to the payout.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clock import utcnow
from app.errors import (
    BatchValidationError,
    InsufficientBalanceError,
    NotFoundError,
    StateTransitionError,
)
from app.idempotency import IdempotencyGate, build_key
from app.ledger import CommissionLedger
from app.money import ZERO, money2
from app.notification_service import Notifier
from app.payment_rail import PaymentRail, PermanentPaymentError, TransientPaymentError
from models.commissions import Commission, CommissionStatus
from models.creators import Creator, CreatorStatus
from models.ledger import LedgerEntry, TransactionType
from models.payout_batches import (
    TERMINAL_ITEM_STATUSES,
    BatchPhase,
    PayoutBatch,
    PayoutBatchItem,
    PayoutItemStatus,
)

logger = logging.getLogger(__name__)

OP_BATCH_APPROVE = "payout_batch_approve"
OP_BATCH_EXECUTE = "payout_batch_execute"
OP_ITEM_TRANSFER = "payout_item_transfer"

# Item statuses that keep a commission out of any other batch
HOLDING_ITEM_STATUSES = (
    PayoutItemStatus.PENDING,
    PayoutItemStatus.PROCESSING,
    PayoutItemStatus.COMPLETED,
)


class PayoutBatchService:
    def __init__(
        self,
        db: Session,
        *,
        rail: PaymentRail,
        ledger: CommissionLedger,
        notifier: Notifier,
        gate: IdempotencyGate,
        settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.rail = rail
        self.ledger = ledger
        self.notifier = notifier
        self.gate = gate
        self.currency = settings.currency
        self.payout_fee = money2(Decimal(str(settings.payout_fee)))
        self.max_attempts = max(int(settings.payout_max_attempts), 1)
        self.backoff_seconds = float(settings.payout_retry_backoff_seconds)
        self._sleep = sleep

    # ---------------------------------------------------------
    # READ
    # ---------------------------------------------------------
    def get_batch(self, batch_id: int) -> PayoutBatch:
        batch = self.db.query(PayoutBatch).filter(PayoutBatch.id == batch_id).first()
        if not batch:
            raise NotFoundError(f"Payout batch {batch_id} not found")
        return batch

    def list_batches(self, limit: int = 50, offset: int = 0) -> list[PayoutBatch]:
        return (
            self.db.query(PayoutBatch)
            .order_by(PayoutBatch.created_at.desc(), PayoutBatch.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def batch_summary(self, batch: PayoutBatch) -> dict:
        counts = {s.value: 0 for s in PayoutItemStatus}
        total_fee = ZERO
        total_net = ZERO
        paid_amount = ZERO
        for item in batch.items:
            counts[item.status.value] += 1
            total_fee += Decimal(str(item.fee))
            total_net += Decimal(str(item.net_amount))
            if item.status == PayoutItemStatus.COMPLETED:
                paid_amount += Decimal(str(item.amount))

        return {
            "batch_id": batch.id,
            "status": batch.status,
            "phase": batch.phase.value,
            "item_count": len(batch.items),
            "total_amount": str(money2(batch.total_amount)),
            "total_fee": str(money2(total_fee)),
            "total_net": str(money2(total_net)),
            "paid_amount": str(money2(paid_amount)),
            "counts": counts,
            "items": [
                {
                    "id": i.id,
                    "commission_id": i.commission_id,
                    "creator_id": i.creator_id,
                    "amount": str(i.amount),
                    "fee": str(i.fee),
                    "net_amount": str(i.net_amount),
                    "status": i.status.value,
                    "transfer_id": i.transfer_id,
                    "error_message": i.error_message,
                    "attempts": i.attempts,
                }
                for i in batch.items
            ],
        }

    # ---------------------------------------------------------
    # DRAFT
    # ---------------------------------------------------------
    def _eligible_commissions(self, creator_ids: Optional[Iterable[int]] = None) -> list[Commission]:
        held = select(PayoutBatchItem.commission_id).where(PayoutBatchItem.status.in_(HOLDING_ITEM_STATUSES))
        q = (
            self.db.query(Commission)
            .join(Creator, Creator.id == Commission.creator_id)
            .filter(
                Commission.status == CommissionStatus.PAYABLE,
                Creator.status == CreatorStatus.ACTIVE,
                Creator.bank_verified.is_(True),
                Creator.payout_destination.isnot(None),
                Creator.ledger_frozen.is_(False),
                Commission.id.notin_(held),
            )
        )
        if creator_ids:
            q = q.filter(Commission.creator_id.in_(list(creator_ids)))
        return q.order_by(Commission.creator_id.asc(), Commission.id.asc()).all()

    def create_batch(
        self,
        created_by: Optional[str] = None,
        creator_ids: Optional[Iterable[int]] = None,
        note: Optional[str] = None,
    ) -> PayoutBatch:
        commissions = self._eligible_commissions(creator_ids)
        if not commissions:
            raise BatchValidationError(["No payable commissions to include in a batch"])

        batch = PayoutBatch(phase=BatchPhase.DRAFT, note=note, created_by=created_by)
        for c in commissions:
            amount = money2(Decimal(str(c.commission_amount)))
            fee = min(self.payout_fee, amount)
            batch.items.append(
                PayoutBatchItem(
                    commission_id=c.id,
                    creator_id=c.creator_id,
                    amount=amount,
                    fee=fee,
                    net_amount=money2(amount - fee),
                    status=PayoutItemStatus.PENDING,
                    attempts=0,
                )
            )
        self.db.add(batch)
        try:
            self.db.commit()
        except IntegrityError:
            # Another draft claimed one of these commissions since they were read
            self.db.rollback()
            logger.warning("PAYOUT: batch creation lost a commission claim race, by=%s", created_by)
            raise BatchValidationError(["A selected commission is already held by another open batch, retry"])

        logger.info(
            "PAYOUT: batch created batch_id=%s items=%s total=%s by=%s",
            batch.id,
            len(batch.items),
            batch.total_amount,
            created_by,
        )
        self.notifier.audit(
            "PAYOUT_BATCH_CREATE",
            "payout_batch",
            batch.id,
            actor=created_by,
            details={"items": len(batch.items), "total_amount": batch.total_amount},
        )
        return batch

    def remove_item(self, batch_id: int, item_id: int, actor: Optional[str] = None) -> PayoutBatch:
        batch = self.get_batch(batch_id)
        if batch.phase != BatchPhase.DRAFT:
            raise StateTransitionError(
                "Items can only be removed from a draft batch",
                batch.phase.value,
                BatchPhase.DRAFT.value,
            )
        item = next((i for i in batch.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found in batch {batch_id}")

        batch.items.remove(item)
        self.db.commit()
        self.notifier.audit(
            "PAYOUT_BATCH_REMOVE_ITEM",
            "payout_batch",
            batch.id,
            actor=actor,
            details={"item_id": item_id, "commission_id": item.commission_id},
        )
        return batch

    # ---------------------------------------------------------
    # APPROVE
    # ---------------------------------------------------------
    def _validate_for_approval(self, batch: PayoutBatch) -> None:
        if not batch.items:
            raise BatchValidationError(["Batch is empty"])

        errors = []
        per_creator: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for item in batch.items:
            commission = item.commission
            if commission.status != CommissionStatus.PAYABLE:
                errors.append(
                    f"Item {item.id}: commission {commission.id} is {commission.status.value}, not payable"
                )
            creator = item.creator
            if not creator.is_payable:
                errors.append(f"Item {item.id}: creator {creator.id} is not active with verified payout details")
            if creator.ledger_frozen:
                errors.append(f"Item {item.id}: ledger of creator {creator.id} is frozen")
            per_creator[item.creator_id] += Decimal(str(item.amount))
        if errors:
            raise BatchValidationError(errors)

        for creator_id, requested in per_creator.items():
            balance = self.ledger.get_balance(creator_id)
            if balance < requested:
                raise InsufficientBalanceError(creator_id, balance, money2(requested))

    def approve_batch(self, batch_id: int, approved_by: Optional[str] = None) -> dict:
        key = build_key("batch_approve", batch_id)
        check = self.gate.require_new(key, OP_BATCH_APPROVE, "payout_batch")
        if not check.is_new:
            return {**(check.existing_response or {}), "replayed": True}

        try:
            batch = self.get_batch(batch_id)
            if batch.phase != BatchPhase.DRAFT:
                raise StateTransitionError(
                    f"Batch {batch_id} is {batch.status}, only draft batches can be approved",
                    batch.phase.value,
                    BatchPhase.APPROVED.value,
                )
            # Commission state may have changed since the draft was built
            self._validate_for_approval(batch)

            batch.phase = BatchPhase.APPROVED
            batch.approved_by = approved_by
            batch.approved_at = utcnow()
            self.db.flush()

            response = self.batch_summary(batch)
            self.gate.complete(key, response, commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self.gate.fail(key, str(e))
            raise

        logger.info("PAYOUT: batch approved batch_id=%s by=%s", batch_id, approved_by)
        self.notifier.audit(
            "PAYOUT_BATCH_APPROVE",
            "payout_batch",
            batch_id,
            actor=approved_by,
            details={"total_amount": response["total_amount"], "items": response["item_count"]},
        )
        return response

    # ---------------------------------------------------------
    # EXECUTE
    # ---------------------------------------------------------
    def execute_batch(self, batch_id: int, executed_by: Optional[str] = None) -> dict:
        key = build_key("batch_execute", batch_id)
        check = self.gate.check(key, OP_BATCH_EXECUTE, "payout_batch")
        if not check.is_new:
            if check.in_flight:
                logger.info("PAYOUT: execution of batch_id=%s already in flight, no-op", batch_id)
                return {"batch_id": batch_id, "status": "in_flight", "noop": True}
            return {**(check.existing_response or {}), "replayed": True}

        try:
            batch = self.get_batch(batch_id)
            if batch.phase == BatchPhase.DRAFT:
                raise StateTransitionError(
                    f"Batch {batch_id} must be approved before execution",
                    batch.phase.value,
                    BatchPhase.EXECUTING.value,
                )
            if batch.phase == BatchPhase.APPROVED:
                batch.phase = BatchPhase.EXECUTING
                batch.executed_by = executed_by
                batch.executed_at = utcnow()
                self.db.commit()
                logger.info("PAYOUT: batch executing batch_id=%s by=%s", batch_id, executed_by)

            for item in list(batch.items):
                if item.status in TERMINAL_ITEM_STATUSES:
                    continue
                self._process_item(batch, item)
                self.gate.touch(key)
        except Exception as e:
            self.db.rollback()
            logger.exception("PAYOUT: execution FAILED batch_id=%s", batch_id)
            self.gate.fail(key, str(e))
            raise

        summary = self.batch_summary(batch)
        unresolved = [i.id for i in batch.items if i.status not in TERMINAL_ITEM_STATUSES]
        if unresolved:
            # Outcome unknown for some transfers: leave the batch retryable
            self.gate.fail(key, f"Unresolved items: {unresolved}")
            logger.warning("PAYOUT: batch_id=%s has unresolved items %s", batch_id, unresolved)
            return summary

        self.gate.complete(key, summary)
        logger.info(
            "PAYOUT: batch finished batch_id=%s status=%s counts=%s",
            batch_id,
            summary["status"],
            summary["counts"],
        )
        self.notifier.audit(
            "PAYOUT_BATCH_EXECUTE",
            "payout_batch",
            batch_id,
            actor=executed_by,
            details={"status": summary["status"], "counts": summary["counts"], "paid_amount": summary["paid_amount"]},
        )
        return summary

    def _lock_commission(self, commission_id: int) -> Commission:
        return (
            self.db.query(Commission)
            .filter(Commission.id == commission_id)
            .with_for_update()
            .populate_existing()
            .one()
        )

    def _skip_reason(self, item: PayoutBatchItem) -> Optional[str]:
        commission = item.commission
        if commission.status != CommissionStatus.PAYABLE:
            return f"Commission {commission.id} is {commission.status.value}, not payable"
        creator = item.creator
        if not creator.is_payable:
            return f"Creator {creator.id} is not active with verified payout details"
        if creator.ledger_frozen:
            return f"Ledger of creator {creator.id} is frozen"
        return None

    def _process_item(self, batch: PayoutBatch, item: PayoutBatchItem) -> None:
        item_key = build_key("payout_item", item.id)
        check = self.gate.check(item_key, OP_ITEM_TRANSFER, "payout_batch_item")
        if not check.is_new:
            # Finalized by an earlier pass, or owned by a live one
            self.db.refresh(item)
            return

        try:
            reason = None
            if item.status == PayoutItemStatus.PENDING:
                # Fresh, locked read: this session may hold a stale commission
                self._lock_commission(item.commission_id)
                reason = self._skip_reason(item)
            if reason:
                item.status = PayoutItemStatus.SKIPPED
                item.error_message = reason
                item.processed_at = utcnow()
                self.gate.complete(item_key, {"item_id": item.id, "status": "skipped"}, commit=False)
                self.db.commit()
                logger.warning("PAYOUT: item skipped item_id=%s reason=%s", item.id, reason)
                return

            # Durable marker before any money moves
            item.status = PayoutItemStatus.PROCESSING
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self.gate.fail(item_key, str(e))
            raise

        creator = item.creator
        last_error: Optional[Exception] = None
        result = None
        for attempt in range(1, self.max_attempts + 1):
            item.attempts = (item.attempts or 0) + 1
            try:
                result = self.rail.send_transfer(
                    idempotency_key=item_key,
                    destination=creator.payout_destination,
                    amount=Decimal(str(item.net_amount)),
                    currency=self.currency,
                    reference=f"payout_batch_{batch.id}",
                )
                break
            except PermanentPaymentError as e:
                self._fail_item(batch, item, item_key, str(e))
                return
            except TransientPaymentError as e:
                last_error = e
                logger.warning(
                    "PAYOUT: transient rail error item_id=%s attempt=%s/%s: %s",
                    item.id,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_seconds * attempt)

        if result is None:
            # Unknown outcome: item and its key stay processing, retried later with the same key
            item.error_message = f"Transfer outcome unknown: {last_error}"
            self.db.commit()
            logger.error("PAYOUT: item_id=%s outcome unknown after %s attempts", item.id, self.max_attempts)
            return

        self._complete_item(batch, item, item_key, result.transfer_id)

    def _fail_item(self, batch: PayoutBatch, item: PayoutBatchItem, item_key: str, error: str) -> None:
        item.status = PayoutItemStatus.FAILED
        item.error_message = error
        item.processed_at = utcnow()
        self.gate.complete(item_key, {"item_id": item.id, "status": "failed", "error": error}, commit=False)
        self.db.commit()

        logger.error("PAYOUT: item FAILED item_id=%s batch_id=%s error=%s", item.id, batch.id, error)
        self.notifier.audit(
            "PAYOUT_ITEM_FAILED",
            "payout_batch_item",
            item.id,
            details={"batch_id": batch.id, "commission_id": item.commission_id, "error": error},
        )

    def _complete_item(self, batch: PayoutBatch, item: PayoutBatchItem, item_key: str, transfer_id: str) -> None:
        entries: list[LedgerEntry] = []
        try:
            item.status = PayoutItemStatus.COMPLETED
            item.transfer_id = transfer_id
            item.error_message = None
            item.processed_at = utcnow()

            entries.append(
                self.ledger.append(
                    item.creator_id,
                    TransactionType.PAYOUT_SENT,
                    -Decimal(str(item.net_amount)),
                    f"Payout batch #{batch.id} (transfer {transfer_id})",
                    reference_type="payout_batch_item",
                    reference_id=item.id,
                )
            )
            fee = Decimal(str(item.fee))
            if fee > 0:
                entries.append(
                    self.ledger.append(
                        item.creator_id,
                        TransactionType.PAYOUT_FEE,
                        -fee,
                        f"Transfer fee, payout batch #{batch.id}",
                        reference_type="payout_batch_item",
                        reference_id=item.id,
                    )
                )

            commission = self._lock_commission(item.commission_id)
            commission.paid_at = item.processed_at
            if commission.status == CommissionStatus.CANCELED:
                # Refunded while the transfer was in flight: the payout stands, the commission is offset
                clawback = self._claw_back_paid_out(batch, commission)
                if clawback is not None:
                    entries.append(clawback)
                logger.warning(
                    "PAYOUT: commission_id=%s canceled during transfer, clawed back item_id=%s",
                    commission.id,
                    item.id,
                )
            else:
                commission.transition_to(CommissionStatus.PAID)

            self.gate.complete(
                item_key,
                {"item_id": item.id, "status": "completed", "transfer_id": transfer_id},
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            # Money has left: the item key stays processing so the retry reuses the rail key
            logger.critical(
                "PAYOUT: transfer %s sent but bookkeeping FAILED item_id=%s batch_id=%s",
                transfer_id,
                item.id,
                batch.id,
            )
            raise

        logger.info(
            "PAYOUT: item completed item_id=%s creator_id=%s net=%s transfer_id=%s",
            item.id,
            item.creator_id,
            item.net_amount,
            transfer_id,
        )
        for entry in entries:
            self.notifier.record_for_entry(entry)

    def _claw_back_paid_out(self, batch: PayoutBatch, commission: Commission) -> Optional[LedgerEntry]:
        if self.ledger.find_reference(
            commission.creator_id,
            TransactionType.COMMISSION_CANCELED,
            "commission",
            commission.id,
        ):
            return None
        return self.ledger.append(
            commission.creator_id,
            TransactionType.COMMISSION_CANCELED,
            -Decimal(str(commission.commission_amount)),
            f"Commission reversed ({commission.cancel_reason or 'canceled'}) after payout batch #{batch.id}",
            reference_type="commission",
            reference_id=commission.id,
        )
