from datetime import timedelta
from decimal import Decimal

import pytest

from app.clock import as_utc
from app.errors import InvalidPayloadError, LedgerFrozenError, StateTransitionError
from models.commissions import Commission, CommissionStatus
from models.creators import Creator
from models.idempotency_keys import IdempotencyKey, IdempotencyStatus
from models.ledger import LedgerEntry, TransactionType
from models.notifications import CreatorNotification
from models.orders import Order, OrderStatus
from schemas.shopify import ShopifyOrderPayload, ShopifyRefundPayload

from conftest import AFTER_HOLD, ORDER_DATE, make_creator, order_payload


def _refund(order_id=5550001, refund_id=9001):
    return ShopifyRefundPayload.model_validate({"id": refund_id, "order_id": order_id})


def test_happy_path_discount_code_commission(db, services):
    emma = make_creator(db, name="Emma", rate="0.15", code="EMMA15")

    result = services.commissions.handle_order_paid(order_payload(order_number=1001, subtotal="100.00"))

    assert result["attribution_priority"] == 1
    assert result["attribution_source"] == "discount_code"
    assert result["commission_amount"] == "15.00"

    commission = db.query(Commission).one()
    assert commission.creator_id == emma.id
    assert commission.commission_amount == Decimal("15.00")
    assert commission.order_total == Decimal("100.00")
    assert commission.status == CommissionStatus.PENDING
    assert as_utc(commission.lock_until) == ORDER_DATE + timedelta(days=14)

    entry = db.query(LedgerEntry).one()
    assert entry.transaction_type == TransactionType.COMMISSION_EARNED
    assert entry.amount == Decimal("15.00")
    assert entry.balance_after == Decimal("15.00")

    order = db.query(Order).one()
    assert order.status == OrderStatus.CONFIRMED
    assert order.order_number == "1001"
    assert order.creator_id == emma.id

    notif = db.query(CreatorNotification).one()
    assert notif.ledger_entry_id == entry.id
    assert notif.read is False


def test_commission_base_is_subtotal_not_total(db, services):
    make_creator(db, rate="0.10", code="EMMA15")

    services.commissions.handle_order_paid(order_payload(subtotal="80.00", total="95.90"))

    assert db.query(Commission).one().commission_amount == Decimal("8.00")


def test_replayed_paid_webhook_creates_one_commission(db, services):
    make_creator(db)
    payload = order_payload()

    first = services.commissions.handle_order_paid(payload)
    second = services.commissions.handle_order_paid(payload)

    assert second["replayed"] is True
    assert second["commission_id"] == first["commission_id"]
    assert db.query(Commission).count() == 1
    assert (
        db.query(LedgerEntry)
        .filter(LedgerEntry.transaction_type == TransactionType.COMMISSION_EARNED)
        .count()
        == 1
    )


def test_order_without_attribution_is_skipped(db, services):
    make_creator(db, code="EMMA15")

    result = services.commissions.handle_order_paid(order_payload(codes=("WINTER10",)))

    assert result["skipped"] is True
    assert result["reason"] == "no_attribution"
    assert db.query(Commission).count() == 0
    assert db.query(Order).one().creator_id is None
    key = db.query(IdempotencyKey).one()
    assert key.status == IdempotencyStatus.COMPLETED


def test_missing_amounts_rejected_without_idempotency_record(db, services):
    make_creator(db)
    payload = ShopifyOrderPayload.model_validate({"id": 42, "discount_codes": [{"code": "EMMA15"}]})

    with pytest.raises(InvalidPayloadError):
        services.commissions.handle_order_paid(payload)

    assert db.query(IdempotencyKey).count() == 0


def test_rate_change_does_not_touch_existing_commission(db, services):
    emma = make_creator(db, rate="0.15")
    services.commissions.handle_order_paid(order_payload())

    emma.commission_rate = Decimal("0.30")
    db.commit()
    db.expire_all()

    commission = db.query(Commission).one()
    assert commission.commission_rate == Decimal("0.1500")
    assert commission.commission_amount == Decimal("15.00")

    with pytest.raises(ValueError):
        commission.commission_amount = Decimal("30.00")


def test_failed_attempt_leaves_nothing_and_redelivery_succeeds(db, services):
    emma = make_creator(db)
    emma.ledger_frozen = True
    db.commit()

    with pytest.raises(LedgerFrozenError):
        services.commissions.handle_order_paid(order_payload())

    assert db.query(Commission).count() == 0
    assert db.query(LedgerEntry).count() == 0
    assert db.query(IdempotencyKey).one().status == IdempotencyStatus.FAILED

    db.query(Creator).filter(Creator.id == emma.id).update({Creator.ledger_frozen: False})
    db.commit()

    result = services.commissions.handle_order_paid(order_payload())
    assert result["commission_amount"] == "15.00"
    assert db.query(Commission).count() == 1
    assert db.query(IdempotencyKey).one().attempts == 2


def test_refund_cancels_unpaid_commission_without_ledger_reversal(db, services):
    make_creator(db)
    services.commissions.handle_order_paid(order_payload())

    result = services.commissions.handle_refund(_refund())

    assert result["commission_status"] == "canceled"
    commission = db.query(Commission).one()
    assert commission.status == CommissionStatus.CANCELED
    assert commission.cancel_reason == "refund"
    assert db.query(Order).one().status == OrderStatus.REFUNDED
    assert db.query(LedgerEntry).count() == 1
    assert services.ledger.get_balance(commission.creator_id) == Decimal("15.00")


def test_refund_of_paid_commission_claws_back_once(db, services):
    emma = make_creator(db)
    services.commissions.handle_order_paid(order_payload())
    commission = db.query(Commission).one()
    commission.status = CommissionStatus.PAID
    db.commit()

    services.commissions.handle_refund(_refund(refund_id=1))
    # A second refund of the same order is absorbed by the idempotency key
    services.commissions.handle_refund(_refund(refund_id=2))

    db.expire_all()
    assert db.query(Commission).one().status == CommissionStatus.PAID
    clawbacks = (
        db.query(LedgerEntry)
        .filter(LedgerEntry.transaction_type == TransactionType.COMMISSION_CANCELED)
        .all()
    )
    assert len(clawbacks) == 1
    assert clawbacks[0].amount == Decimal("-15.00")
    assert services.ledger.get_balance(emma.id) == Decimal("0.00")


def test_refund_for_unknown_order_is_skipped(db, services):
    result = services.commissions.handle_refund(_refund(order_id=123456))

    assert result["skipped"] is True
    assert result["reason"] == "order_not_found"


def test_cancelled_order_cancels_commission(db, services):
    make_creator(db)
    services.commissions.handle_order_paid(order_payload())

    services.commissions.handle_order_cancelled(order_payload())

    assert db.query(Commission).one().status == CommissionStatus.CANCELED
    assert db.query(Order).one().status == OrderStatus.CANCELED


def test_order_events_never_regress_status(db, services):
    make_creator(db)
    services.commissions.handle_order_paid(order_payload())

    services.commissions.handle_order_event(order_payload())

    assert db.query(Order).one().status == OrderStatus.CONFIRMED
    assert db.query(Order).count() == 1


def test_maturity_promotes_only_elapsed_commissions(db, services):
    make_creator(db)
    services.commissions.handle_order_paid(order_payload())

    assert services.commissions.promote_matured_commissions(now=ORDER_DATE + timedelta(days=3)) == 0
    assert db.query(Commission).one().status == CommissionStatus.PENDING

    assert services.commissions.promote_matured_commissions(now=AFTER_HOLD) == 1
    assert db.query(Commission).one().status == CommissionStatus.PAYABLE


def test_manual_lock_holds_commission_until_date(db, services):
    make_creator(db)
    services.commissions.handle_order_paid(order_payload())
    commission = db.query(Commission).one()
    hold_until = AFTER_HOLD + timedelta(days=30)

    services.commissions.lock_commission(commission.id, until=hold_until, actor="admin:1", reason="dispute")

    assert commission.status == CommissionStatus.LOCKED
    assert services.commissions.promote_matured_commissions(now=AFTER_HOLD) == 0
    assert services.commissions.promote_matured_commissions(now=hold_until + timedelta(days=1)) == 1


def test_commission_transitions_are_monotonic(db, services):
    make_creator(db)
    services.commissions.handle_order_paid(order_payload())
    commission = db.query(Commission).one()
    commission.transition_to(CommissionStatus.PAYABLE)
    commission.transition_to(CommissionStatus.PAID)

    with pytest.raises(StateTransitionError):
        commission.transition_to(CommissionStatus.CANCELED)
    with pytest.raises(StateTransitionError):
        commission.transition_to(CommissionStatus.PAYABLE)
