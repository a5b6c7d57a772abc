# app/ledger.py

"""
Commission ledger: append-only log plus running balance per creator.

append() never commits. The caller commits the entry in the same
transaction as the state change it records (commission created, payout
item completed...), so a rolled back operation leaves no dangling entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.errors import LedgerFrozenError, LedgerIntegrityError, NotFoundError
from app.money import ZERO, money2
from models.creators import Creator
from models.ledger import LedgerEntry, TransactionType

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    creator_id: int
    entries_checked: int = 0
    ok: bool = True
    balance: Decimal = ZERO
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "creator_id": self.creator_id,
            "entries_checked": self.entries_checked,
            "ok": self.ok,
            "balance": str(self.balance),
            "errors": self.errors,
        }


class CommissionLedger:
    def __init__(self, db: Session, notifier=None):
        self.db = db
        # Optional: used to raise an audit alert when an integrity check fails
        self.notifier = notifier

    def _last_entry(self, creator_id: int) -> Optional[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.creator_id == creator_id)
            .order_by(LedgerEntry.entry_number.desc())
            .first()
        )

    def append(
        self,
        creator_id: int,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> LedgerEntry:
        # Row lock on the creator serializes appends per creator (no-op on SQLite);
        # the (creator_id, entry_number) unique constraint rejects a stale append.
        creator = (
            self.db.query(Creator)
            .filter(Creator.id == creator_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not creator:
            raise NotFoundError(f"Creator {creator_id} not found")
        if creator.ledger_frozen:
            raise LedgerFrozenError(creator_id)

        amount = money2(Decimal(str(amount)))
        last = self._last_entry(creator_id)
        previous_balance = Decimal(str(last.balance_after)) if last else ZERO
        entry_number = (last.entry_number + 1) if last else 1

        entry = LedgerEntry(
            creator_id=creator_id,
            entry_number=entry_number,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=money2(previous_balance + amount),
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        self.db.add(entry)
        self.db.flush()

        logger.info(
            "LEDGER: append creator_id=%s #%s type=%s amount=%s balance_after=%s",
            creator_id,
            entry_number,
            transaction_type.value,
            amount,
            entry.balance_after,
        )
        return entry

    def find_reference(
        self,
        creator_id: int,
        transaction_type: TransactionType,
        reference_type: str,
        reference_id: int,
    ) -> Optional[LedgerEntry]:
        return (
            self.db.query(LedgerEntry)
            .filter(
                LedgerEntry.creator_id == creator_id,
                LedgerEntry.transaction_type == transaction_type,
                LedgerEntry.reference_type == reference_type,
                LedgerEntry.reference_id == reference_id,
            )
            .first()
        )

    def get_balance(self, creator_id: int) -> Decimal:
        last = self._last_entry(creator_id)
        if not last:
            return ZERO
        return money2(Decimal(str(last.balance_after)))

    def get_ledger(
        self,
        creator_id: int,
        limit: int = 50,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[LedgerEntry]:
        q = self.db.query(LedgerEntry).filter(LedgerEntry.creator_id == creator_id)
        if transaction_type is not None:
            q = q.filter(LedgerEntry.transaction_type == transaction_type)
        return q.order_by(LedgerEntry.entry_number.desc()).offset(offset).limit(limit).all()

    def verify_integrity(self, creator_id: int, freeze: bool = True) -> IntegrityReport:
        """
        Recompute the running balance from entry 1. A mismatch is a broken
        invariant, not a recoverable fault: the creator's ledger is frozen
        and an alert is raised.
        """
        report = IntegrityReport(creator_id=creator_id)
        running = ZERO
        expected_number = 1

        entries = (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.creator_id == creator_id)
            .order_by(LedgerEntry.entry_number.asc())
            .populate_existing()
            .all()
        )
        for entry in entries:
            report.entries_checked += 1
            if entry.entry_number != expected_number:
                report.errors.append(
                    f"entry_number gap: expected {expected_number}, found {entry.entry_number}"
                )
            running = money2(running + Decimal(str(entry.amount)))
            found = money2(Decimal(str(entry.balance_after)))
            if found != running:
                err = LedgerIntegrityError(creator_id, entry.entry_number, running, found)
                report.errors.append(str(err))
                # Continue from the stored value so one corruption is reported once
                running = found
            expected_number = entry.entry_number + 1

        report.balance = running
        report.ok = not report.errors

        if not report.ok:
            logger.critical(
                "LEDGER: INTEGRITY VIOLATION creator_id=%s errors=%s",
                creator_id,
                report.errors,
            )
            if freeze:
                self.freeze(creator_id)
            if self.notifier is not None:
                self.notifier.audit(
                    "LEDGER_INTEGRITY_VIOLATION",
                    "creator",
                    creator_id,
                    details=report.as_dict(),
                )
        return report

    def freeze(self, creator_id: int) -> None:
        self.db.query(Creator).filter(Creator.id == creator_id).update(
            {Creator.ledger_frozen: True}, synchronize_session=False
        )
        self.db.commit()
        logger.critical("LEDGER: writes halted for creator_id=%s", creator_id)

    def unfreeze(self, creator_id: int) -> None:
        self.db.query(Creator).filter(Creator.id == creator_id).update(
            {Creator.ledger_frozen: False}, synchronize_session=False
        )
        self.db.commit()
        logger.warning("LEDGER: writes resumed for creator_id=%s", creator_id)

    def balances_by_creator(self) -> dict[int, Decimal]:
        """Current balance of every creator that has at least one entry."""
        latest = (
            self.db.query(
                LedgerEntry.creator_id,
                func.max(LedgerEntry.entry_number).label("last_number"),
            )
            .group_by(LedgerEntry.creator_id)
            .subquery()
        )
        rows = (
            self.db.query(LedgerEntry.creator_id, LedgerEntry.balance_after)
            .join(
                latest,
                (LedgerEntry.creator_id == latest.c.creator_id)
                & (LedgerEntry.entry_number == latest.c.last_number),
            )
            .all()
        )
        return {int(r.creator_id): money2(Decimal(str(r.balance_after))) for r in rows}

    def financial_summary(self) -> dict:
        rows = (
            self.db.query(
                LedgerEntry.transaction_type,
                func.coalesce(func.sum(LedgerEntry.amount), 0).label("total"),
                func.count(LedgerEntry.id).label("count"),
            )
            .group_by(LedgerEntry.transaction_type)
            .all()
        )
        totals = {t: ZERO for t in TransactionType}
        counts = {t: 0 for t in TransactionType}
        for r in rows:
            totals[r.transaction_type] = money2(Decimal(str(r.total)))
            counts[r.transaction_type] = int(r.count)

        return {
            "total_commissions_earned": str(totals[TransactionType.COMMISSION_EARNED]),
            "total_commissions_canceled": str(totals[TransactionType.COMMISSION_CANCELED]),
            "total_payouts_sent": str(totals[TransactionType.PAYOUT_SENT]),
            "total_fees": str(totals[TransactionType.PAYOUT_FEE]),
            "total_adjustments": str(totals[TransactionType.ADJUSTMENT]),
            "entries_by_type": {t.value: counts[t] for t in TransactionType},
        }
