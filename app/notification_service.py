# app/notification_service.py

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.ledger import LedgerEntry, TransactionType
from models.notifications import AuditLog, CreatorNotification

logger = logging.getLogger(__name__)

SLACK_TIMEOUT_SECONDS = 5

NOTIFICATION_TITLES = {
    TransactionType.COMMISSION_EARNED: "Commission earned",
    TransactionType.COMMISSION_CANCELED: "Commission canceled",
    TransactionType.PAYOUT_SENT: "Payout sent",
    TransactionType.PAYOUT_FEE: "Transfer fee",
    TransactionType.ADJUSTMENT: "Balance adjustment",
}


def _jsonable(details: Optional[dict]) -> Optional[dict]:
    if details is None:
        return None
    out: dict[str, Any] = {}
    for k, v in details.items():
        if isinstance(v, Decimal):
            out[k] = str(v)
        elif isinstance(v, dict):
            out[k] = _jsonable(v)
        else:
            out[k] = v
    return out


class Notifier:
    """
    Creator notifications + admin audit trail.

    Both are side channels: they are written after the financial entry has
    been committed, in their own transaction, and a failure here is logged
    and swallowed. A notification can never roll back a ledger row.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        creator_id: int,
        type: str,
        title: str,
        message: Optional[str] = None,
        amount: Optional[Decimal] = None,
        ledger_entry_id: Optional[int] = None,
    ) -> Optional[CreatorNotification]:
        try:
            notif = CreatorNotification(
                creator_id=creator_id,
                type=type,
                title=title,
                message=message,
                amount=amount,
                ledger_entry_id=ledger_entry_id,
                read=False,
            )
            self.db.add(notif)
            self.db.commit()
            return notif
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "NOTIFY: record FAILED | creator_id=%s | type=%s | ledger_entry_id=%s",
                creator_id,
                type,
                ledger_entry_id,
            )
            return None

    def record_for_entry(self, entry: LedgerEntry, message: Optional[str] = None) -> Optional[CreatorNotification]:
        return self.record(
            creator_id=entry.creator_id,
            type=entry.transaction_type.value,
            title=NOTIFICATION_TITLES.get(entry.transaction_type, "Transaction"),
            message=message or entry.description,
            amount=entry.amount,
            ledger_entry_id=entry.id,
        )

    def audit(
        self,
        action: str,
        resource_type: str,
        resource_id: Any,
        actor: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Optional[AuditLog]:
        try:
            row = AuditLog(
                actor=actor or "system",
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                details=_jsonable(details),
            )
            self.db.add(row)
            self.db.commit()
            return row
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "AUDIT: write FAILED | action=%s | resource=%s:%s",
                action,
                resource_type,
                resource_id,
            )
            return None

    def backfill_missing_notifications(self) -> int:
        """
        Self-healing after a partial outage: every ledger entry without a
        notification gets one (already marked read, dated like the entry).
        """
        missing = (
            self.db.query(LedgerEntry)
            .outerjoin(CreatorNotification, CreatorNotification.ledger_entry_id == LedgerEntry.id)
            .filter(CreatorNotification.id.is_(None))
            .order_by(LedgerEntry.id.asc())
            .all()
        )
        if not missing:
            logger.info("NOTIFY: backfill found nothing to do")
            return 0

        for entry in missing:
            self.db.add(
                CreatorNotification(
                    creator_id=entry.creator_id,
                    type=entry.transaction_type.value,
                    title=NOTIFICATION_TITLES.get(entry.transaction_type, "Transaction"),
                    message=entry.description,
                    amount=entry.amount,
                    ledger_entry_id=entry.id,
                    read=True,
                    created_at=entry.created_at,
                )
            )
        self.db.commit()
        logger.info("NOTIFY: backfilled %s notifications", len(missing))
        return len(missing)


def send_slack_commission_notification(
    webhook_url: str,
    *,
    order_number: Any,
    order_total: Any,
    commission_amount: Any,
    attribution_source: Optional[str],
    attribution_priority: int,
    request_id: Optional[str] = None,
) -> None:
    """Best-effort, not retried. Run it as a background task."""
    if not webhook_url:
        return

    message = {
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "New creator commission"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Order:*\n#{order_number}"},
                    {"type": "mrkdwn", "text": f"*Amount:*\n{order_total} EUR"},
                    {"type": "mrkdwn", "text": f"*Commission:*\n{commission_amount} EUR"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Attribution:*\n{attribution_source} (P{attribution_priority})",
                    },
                ],
            },
        ]
    }

    try:
        r = requests.post(webhook_url, json=message, timeout=SLACK_TIMEOUT_SECONDS)
        if r.status_code >= 300:
            logger.warning(
                "SLACK: notification rejected status=%s order=%s request_id=%s",
                r.status_code,
                order_number,
                request_id,
            )
            return
        logger.info("SLACK: notification sent order=%s request_id=%s", order_number, request_id)
    except requests.RequestException:
        logger.exception("SLACK: notification FAILED order=%s request_id=%s", order_number, request_id)
