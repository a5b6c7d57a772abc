# app/idempotency.py

"""
Idempotency gate.

Every handler that can be re-invoked (webhook redelivery, retried batch
execution) claims an idempotency key before producing side effects:

    check = gate.check("order_paid_123", "webhook_shopify_order")
    if not check.is_new:
        return check.existing_response      # completed earlier, or in flight
    ...do the work...
    gate.complete("order_paid_123", response)

The claim is an insert into a unique-constrained table, so of two racing
deliveries exactly one wins. A `failed` key, or a `processing` key whose
owner went silent for longer than the stale window, can be reclaimed by
exactly one caller through a compare-and-set on `attempts`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clock import utcnow
from app.errors import OperationInProgressError
from models.idempotency_keys import IdempotencyKey, IdempotencyStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LEN = 2000


def build_key(prefix: str, natural_id: Any) -> str:
    return f"{prefix}_{natural_id}"


@dataclass
class IdempotencyCheck:
    key: str
    is_new: bool
    status: IdempotencyStatus
    existing_response: Optional[dict] = None
    in_flight: bool = False
    attempts: int = 1


class IdempotencyGate:
    def __init__(
        self,
        db: Session,
        stale_after_seconds: int = 300,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self._clock = clock

    def _get(self, key: str) -> Optional[IdempotencyKey]:
        return (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.idempotency_key == key)
            .populate_existing()
            .first()
        )

    def check(self, key: str, operation_type: str, resource_type: Optional[str] = None) -> IdempotencyCheck:
        now = self._clock()

        record = IdempotencyKey(
            idempotency_key=key,
            operation_type=operation_type,
            resource_type=resource_type,
            status=IdempotencyStatus.PROCESSING,
            attempts=1,
            updated_at=now,
        )
        self.db.add(record)
        try:
            self.db.commit()
            logger.info("IDEMPOTENCY: claimed new key=%s op=%s", key, operation_type)
            return IdempotencyCheck(key=key, is_new=True, status=IdempotencyStatus.PROCESSING)
        except IntegrityError:
            self.db.rollback()

        existing = self._get(key)
        if existing is None:
            # Row vanished between insert and read: treat as contended
            raise OperationInProgressError(key)

        if existing.status == IdempotencyStatus.COMPLETED:
            logger.info("IDEMPOTENCY: replay of completed key=%s", key)
            return IdempotencyCheck(
                key=key,
                is_new=False,
                status=IdempotencyStatus.COMPLETED,
                existing_response=existing.response_data,
                attempts=existing.attempts,
            )

        previous_status = existing.status
        previous_attempts = existing.attempts
        if self._reclaim(existing.id, previous_attempts, now):
            logger.warning(
                "IDEMPOTENCY: reclaimed key=%s previous_status=%s attempt=%s",
                key,
                previous_status.value,
                previous_attempts + 1,
            )
            return IdempotencyCheck(
                key=key,
                is_new=True,
                status=IdempotencyStatus.PROCESSING,
                attempts=previous_attempts + 1,
            )

        current = self._get(key)
        if current is not None and current.status == IdempotencyStatus.COMPLETED:
            return IdempotencyCheck(
                key=key,
                is_new=False,
                status=IdempotencyStatus.COMPLETED,
                existing_response=current.response_data,
                attempts=current.attempts,
            )

        logger.info("IDEMPOTENCY: key=%s is in flight", key)
        return IdempotencyCheck(
            key=key,
            is_new=False,
            status=IdempotencyStatus.PROCESSING,
            in_flight=True,
            attempts=current.attempts if current is not None else previous_attempts,
        )

    def require_new(self, key: str, operation_type: str, resource_type: Optional[str] = None) -> IdempotencyCheck:
        """Like check(), but an in-flight key raises OperationInProgressError."""
        result = self.check(key, operation_type, resource_type)
        if result.in_flight:
            raise OperationInProgressError(key)
        return result

    def _reclaim(self, record_id: int, attempts: int, now) -> bool:
        cutoff = now - self.stale_after
        claimable = or_(
            IdempotencyKey.status == IdempotencyStatus.FAILED,
            and_(
                IdempotencyKey.status == IdempotencyStatus.PROCESSING,
                IdempotencyKey.updated_at < cutoff,
            ),
        )
        updated = (
            self.db.query(IdempotencyKey)
            .filter(
                IdempotencyKey.id == record_id,
                IdempotencyKey.attempts == attempts,
                claimable,
            )
            .update(
                {
                    IdempotencyKey.status: IdempotencyStatus.PROCESSING,
                    IdempotencyKey.attempts: attempts + 1,
                    IdempotencyKey.updated_at: now,
                    IdempotencyKey.error_message: None,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def complete(self, key: str, response: Optional[dict] = None, commit: bool = True) -> None:
        """
        Mark the key completed and cache the response.
        With commit=False the update joins the caller's transaction, so the
        side effects and the completion marker land atomically.
        """
        (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.idempotency_key == key)
            .update(
                {
                    IdempotencyKey.status: IdempotencyStatus.COMPLETED,
                    IdempotencyKey.response_data: response,
                    IdempotencyKey.completed_at: self._clock(),
                    IdempotencyKey.updated_at: self._clock(),
                    IdempotencyKey.error_message: None,
                },
                synchronize_session=False,
            )
        )
        if commit:
            self.db.commit()

    def fail(self, key: str, error_message: str) -> None:
        """Mark the key failed. Call after rolling back the failed work."""
        (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.idempotency_key == key)
            .update(
                {
                    IdempotencyKey.status: IdempotencyStatus.FAILED,
                    IdempotencyKey.error_message: (error_message or "")[:MAX_ERROR_LEN],
                    IdempotencyKey.updated_at: self._clock(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        logger.warning("IDEMPOTENCY: key=%s marked failed: %s", key, error_message)

    def touch(self, key: str) -> None:
        """Refresh updated_at so a long-running owner is not considered stale."""
        (
            self.db.query(IdempotencyKey)
            .filter(
                IdempotencyKey.idempotency_key == key,
                IdempotencyKey.status == IdempotencyStatus.PROCESSING,
            )
            .update({IdempotencyKey.updated_at: self._clock()}, synchronize_session=False)
        )
        self.db.commit()
