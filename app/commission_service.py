# app/commission_service.py

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.attribution import Attribution, AttributionResolver
from app.clock import as_utc, utcnow
from app.errors import InvalidPayloadError, NotFoundError
from app.idempotency import IdempotencyGate, build_key
from app.ledger import CommissionLedger
from app.money import money2
from app.notification_service import Notifier
from models.checkout_sessions import CheckoutSession
from models.commissions import Commission, CommissionStatus
from models.creators import Creator
from models.ledger import LedgerEntry, TransactionType
from models.orders import ORDER_STATUS_RANK, TERMINAL_ORDER_STATUSES, Order, OrderStatus
from schemas.shopify import ShopifyCheckoutPayload, ShopifyOrderPayload, ShopifyRefundPayload

logger = logging.getLogger(__name__)

OP_ORDER_PAID = "webhook_shopify_order"
OP_ORDER_REVERSAL = "webhook_shopify_refund"


class MaturityPolicy:
    """How long a fresh commission is held before it can be paid (refund window)."""

    def __init__(self, hold_days: int = 14):
        self.hold_days = max(int(hold_days), 0)

    def lock_until(self, order_date: Optional[datetime]) -> datetime:
        base = as_utc(order_date) or utcnow()
        return base + timedelta(days=self.hold_days)


# ---------------------------------------------------------
# ORDER UPSERT (keyed by the platform order id)
# ---------------------------------------------------------
def _apply_order_fields(order: Order, payload: ShopifyOrderPayload, attribution: Attribution) -> None:
    if payload.order_number is not None:
        order.order_number = str(payload.order_number)
    if payload.customer_email:
        order.customer_email = payload.customer_email
    if payload.subtotal_price is not None:
        order.subtotal_amount = money2(payload.subtotal_price)
    if payload.total_price is not None:
        order.total_amount = money2(payload.total_price)
    if payload.currency:
        order.currency = payload.currency.upper()
    if payload.first_discount_code:
        order.discount_code = payload.first_discount_code
    if payload.created_at is not None:
        order.order_date = as_utc(payload.created_at)

    # Attribution is frozen once a commission exists; a later miss never erases a hit
    if order.commission is None and attribution.found:
        order.creator_id = attribution.creator_id
        order.routine_id = attribution.routine_id
        order.routine_variant = attribution.variant
        order.attribution_source = attribution.source
        order.attribution_priority = attribution.priority


def upsert_order(
    db: Session,
    payload: ShopifyOrderPayload,
    attribution: Attribution,
    status: OrderStatus,
) -> Order:
    """
    Insert-or-update on external_order_id. Flushes, does not commit.
    Call at the start of a transaction: a lost insert race rolls the session back.
    """
    external_id = str(payload.id)

    for _ in range(2):
        order = db.query(Order).filter(Order.external_order_id == external_id).first()

        if order is None:
            order = Order(
                external_order_id=external_id,
                status=status,
                currency="EUR",
                attribution_priority=0,
            )
            _apply_order_fields(order, payload, attribution)
            db.add(order)
            try:
                db.flush()
                return order
            except IntegrityError:
                # Concurrent delivery inserted the same order first
                db.rollback()
                logger.info("ORDER: insert race on external_order_id=%s, retrying as update", external_id)
                continue

        if order.status in TERMINAL_ORDER_STATUSES:
            logger.info(
                "ORDER: external_order_id=%s is %s, upsert ignored",
                external_id,
                order.status.value,
            )
            return order

        _apply_order_fields(order, payload, attribution)
        if ORDER_STATUS_RANK[status] > ORDER_STATUS_RANK[order.status]:
            order.status = status
        db.flush()
        return order

    raise RuntimeError(f"Could not upsert order {external_id}")


def record_checkout_session(
    db: Session,
    *,
    cart_token: str,
    creator_id: Optional[int],
    routine_id: Optional[str] = None,
    variant: Optional[str] = None,
) -> CheckoutSession:
    """Cart token -> creator mapping written by the checkout flow (priority 2 input)."""
    row = db.query(CheckoutSession).filter(CheckoutSession.cart_token == cart_token).first()
    if row is None:
        row = CheckoutSession(cart_token=cart_token)
        db.add(row)
    row.creator_id = creator_id
    row.routine_id = routine_id
    row.variant = variant
    db.commit()
    db.refresh(row)
    return row


def _commission_base(payload: ShopifyOrderPayload) -> Decimal:
    # Commission base is the subtotal (no shipping / tax); total only as fallback
    base = payload.subtotal_price if payload.subtotal_price is not None else payload.total_price
    if base is None:
        raise InvalidPayloadError(f"Order {payload.id} has neither subtotal_price nor total_price")
    if base < 0:
        raise InvalidPayloadError(f"Order {payload.id} has a negative amount")
    return money2(base)


class CommissionService:
    def __init__(
        self,
        db: Session,
        *,
        resolver: AttributionResolver,
        ledger: CommissionLedger,
        notifier: Notifier,
        gate: IdempotencyGate,
        policy: MaturityPolicy,
        default_commission_rate: Decimal = Decimal("0.10"),
    ):
        self.db = db
        self.resolver = resolver
        self.ledger = ledger
        self.notifier = notifier
        self.gate = gate
        self.policy = policy
        self.default_commission_rate = Decimal(str(default_commission_rate))

    # ---------------------------------------------------------
    # orders/create, orders/updated
    # ---------------------------------------------------------
    def handle_order_event(self, payload: ShopifyOrderPayload, request_id: Optional[str] = None) -> dict:
        attribution = self.resolver.resolve(payload.model_dump(), request_id)
        try:
            order = upsert_order(self.db, payload, attribution, OrderStatus.PENDING)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "ORDER: upserted external_order_id=%s status=%s attribution=%s creator_id=%s request_id=%s",
            order.external_order_id,
            order.status.value,
            attribution.source,
            attribution.creator_id,
            request_id,
        )
        return {"order_id": order.id, "status": order.status.value}

    # ---------------------------------------------------------
    # orders/paid -> exactly one commission
    # ---------------------------------------------------------
    def handle_order_paid(self, payload: ShopifyOrderPayload, request_id: Optional[str] = None) -> dict:
        base = _commission_base(payload)
        external_id = str(payload.id)
        key = build_key("order_paid", external_id)

        check = self.gate.require_new(key, OP_ORDER_PAID, "shopify_order")
        if not check.is_new:
            logger.info("ORDER: paid event already processed (idempotent) external_order_id=%s request_id=%s", external_id, request_id)
            return {**(check.existing_response or {}), "replayed": True}

        entry: Optional[LedgerEntry] = None
        try:
            attribution = self.resolver.resolve(payload.model_dump(), request_id)
            order = upsert_order(self.db, payload, attribution, OrderStatus.CONFIRMED)

            if not attribution.found:
                response = {
                    "skipped": True,
                    "reason": "no_attribution",
                    "order_id": order.id,
                    "shopify_order_id": external_id,
                }
                self.gate.complete(key, response, commit=False)
                self.db.commit()
                logger.info("ORDER: no creator attribution, commission skipped external_order_id=%s request_id=%s", external_id, request_id)
                return response

            if order.status in TERMINAL_ORDER_STATUSES:
                # Refund / cancel was delivered before the paid event
                response = {
                    "skipped": True,
                    "reason": f"order_{order.status.value}",
                    "order_id": order.id,
                    "shopify_order_id": external_id,
                }
                self.gate.complete(key, response, commit=False)
                self.db.commit()
                logger.warning("ORDER: paid event for %s order, commission skipped external_order_id=%s", order.status.value, external_id)
                return response

            commission, entry = self._create_commission(order, attribution, base)

            response = {
                "order_id": order.id,
                "shopify_order_id": external_id,
                "order_number": order.order_number,
                "creator_id": commission.creator_id,
                "attribution_source": attribution.source,
                "attribution_priority": attribution.priority,
                "commission_id": commission.id,
                "order_total": str(commission.order_total),
                "commission_rate": str(commission.commission_rate),
                "commission_amount": str(commission.commission_amount),
            }
            self.gate.complete(key, response, commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception("ORDER: paid processing FAILED external_order_id=%s request_id=%s", external_id, request_id)
            self.gate.fail(key, str(e))
            raise

        logger.info(
            "COMMISSION: created commission_id=%s creator_id=%s amount=%s request_id=%s",
            response["commission_id"],
            response["creator_id"],
            response["commission_amount"],
            request_id,
        )
        if entry is not None:
            self.notifier.record_for_entry(entry, message=f"Commission on order #{order.order_number or external_id}")
        return response

    def _create_commission(self, order: Order, attribution: Attribution, base: Decimal):
        existing = self.db.query(Commission).filter(Commission.order_id == order.id).first()
        if existing is not None:
            # Redo after a crash between commit and completion marker
            logger.warning("COMMISSION: already exists for order_id=%s, reusing commission_id=%s", order.id, existing.id)
            return existing, None

        creator = self.db.query(Creator).filter(Creator.id == attribution.creator_id).first()
        if creator is None:
            raise NotFoundError(f"Creator {attribution.creator_id} not found")

        rate = Decimal(str(creator.commission_rate)) if creator.commission_rate is not None else self.default_commission_rate
        amount = money2(base * rate)

        commission = Commission(
            order_id=order.id,
            creator_id=creator.id,
            order_total=base,
            commission_rate=rate,
            commission_amount=amount,
            status=CommissionStatus.PENDING,
            lock_until=self.policy.lock_until(order.order_date),
            routine_id=attribution.routine_id,
            routine_variant=attribution.variant,
        )
        self.db.add(commission)
        self.db.flush()

        entry = self.ledger.append(
            creator.id,
            TransactionType.COMMISSION_EARNED,
            amount,
            f"Commission on order #{order.order_number or order.external_order_id} ({rate * 100:.2f}%)",
            reference_type="commission",
            reference_id=commission.id,
        )
        return commission, entry

    # ---------------------------------------------------------
    # refunds/create, orders/cancelled
    # ---------------------------------------------------------
    def handle_refund(self, payload: ShopifyRefundPayload, request_id: Optional[str] = None) -> dict:
        external_id = str(payload.order_id)
        return self._reverse_order(
            external_id,
            OrderStatus.REFUNDED,
            build_key("order_refunded", external_id),
            reason="refund",
            request_id=request_id,
        )

    def handle_order_cancelled(self, payload: ShopifyOrderPayload, request_id: Optional[str] = None) -> dict:
        external_id = str(payload.id)
        return self._reverse_order(
            external_id,
            OrderStatus.CANCELED,
            build_key("order_cancelled", external_id),
            reason="order_canceled",
            request_id=request_id,
        )

    def _reverse_order(
        self,
        external_id: str,
        target: OrderStatus,
        key: str,
        reason: str,
        request_id: Optional[str] = None,
    ) -> dict:
        check = self.gate.require_new(key, OP_ORDER_REVERSAL, "shopify_order")
        if not check.is_new:
            return {**(check.existing_response or {}), "replayed": True}

        entry: Optional[LedgerEntry] = None
        try:
            order = self.db.query(Order).filter(Order.external_order_id == external_id).first()
            if order is None:
                response = {"skipped": True, "reason": "order_not_found", "shopify_order_id": external_id}
                self.gate.complete(key, response, commit=False)
                self.db.commit()
                logger.warning("ORDER: %s for unknown external_order_id=%s request_id=%s", reason, external_id, request_id)
                return response

            if target == OrderStatus.REFUNDED or order.status != OrderStatus.REFUNDED:
                order.status = target

            commission = order.commission
            commission_status = None
            if commission is not None:
                if commission.status == CommissionStatus.PAID:
                    entry = self._claw_back(commission, order, reason)
                elif commission.status != CommissionStatus.CANCELED:
                    # Not paid yet: cancel, no ledger reversal
                    commission.transition_to(CommissionStatus.CANCELED)
                    commission.canceled_at = utcnow()
                    commission.cancel_reason = reason
                commission_status = commission.status.value

            response = {
                "order_id": order.id,
                "shopify_order_id": external_id,
                "order_status": order.status.value,
                "commission_id": commission.id if commission else None,
                "commission_status": commission_status,
                "clawback_entry_id": entry.id if entry is not None else None,
            }
            self.gate.complete(key, response, commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.exception("ORDER: %s processing FAILED external_order_id=%s request_id=%s", reason, external_id, request_id)
            self.gate.fail(key, str(e))
            raise

        logger.info(
            "ORDER: %s applied external_order_id=%s commission_status=%s request_id=%s",
            reason,
            external_id,
            response["commission_status"],
            request_id,
        )
        if entry is not None:
            self.notifier.record_for_entry(entry)
        return response

    def _claw_back(self, commission: Commission, order: Order, reason: str) -> Optional[LedgerEntry]:
        """A paid commission stays paid; the creator's balance gets an offsetting entry."""
        already = self.ledger.find_reference(
            commission.creator_id,
            TransactionType.COMMISSION_CANCELED,
            "commission",
            commission.id,
        )
        if already is not None:
            return None

        return self.ledger.append(
            commission.creator_id,
            TransactionType.COMMISSION_CANCELED,
            -Decimal(str(commission.commission_amount)),
            f"Commission reversed ({reason}) on order #{order.order_number or order.external_order_id}",
            reference_type="commission",
            reference_id=commission.id,
        )

    # ---------------------------------------------------------
    # checkouts/create, checkouts/update
    # ---------------------------------------------------------
    def handle_checkout(self, payload: ShopifyCheckoutPayload, request_id: Optional[str] = None) -> dict:
        cart_id = payload.cart_token or payload.token
        if not cart_id:
            return {"tracked": False}

        row = self.db.query(CheckoutSession).filter(CheckoutSession.cart_token == cart_id).first()
        if row is None:
            return {"tracked": False}

        logger.info(
            "CHECKOUT: routine checkout tracked checkout_id=%s routine_id=%s creator_id=%s variant=%s request_id=%s",
            payload.id,
            row.routine_id,
            row.creator_id,
            row.variant,
            request_id,
        )
        return {"tracked": True, "creator_id": row.creator_id}

    # ---------------------------------------------------------
    # Maturity: pending/locked -> payable
    # ---------------------------------------------------------
    def promote_matured_commissions(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        matured = (
            self.db.query(Commission)
            .join(Order, Order.id == Commission.order_id)
            .filter(
                Commission.status.in_([CommissionStatus.PENDING, CommissionStatus.LOCKED]),
                Commission.lock_until.isnot(None),
                Commission.lock_until <= now,
                Order.status == OrderStatus.CONFIRMED,
            )
            .all()
        )
        for commission in matured:
            commission.transition_to(CommissionStatus.PAYABLE)
        self.db.commit()

        if matured:
            logger.info("COMMISSION: %s commissions became payable", len(matured))
        return len(matured)

    def lock_commission(
        self,
        commission_id: int,
        until: Optional[datetime] = None,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Commission:
        """Manual hold. until=None keeps it locked until someone sets a date."""
        commission = self.db.query(Commission).filter(Commission.id == commission_id).first()
        if commission is None:
            raise NotFoundError(f"Commission {commission_id} not found")

        if commission.status != CommissionStatus.LOCKED:
            commission.transition_to(CommissionStatus.LOCKED)
        commission.lock_until = as_utc(until)
        self.db.commit()

        self.notifier.audit(
            "COMMISSION_LOCK",
            "commission",
            commission.id,
            actor=actor,
            details={"lock_until": until.isoformat() if until else None, "reason": reason},
        )
        return commission
