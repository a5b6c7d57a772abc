from decimal import Decimal
from types import SimpleNamespace

import requests

from app import notification_service
from app.notification_service import send_slack_commission_notification
from models.ledger import TransactionType
from models.notifications import AuditLog, CreatorNotification

from conftest import make_creator


def test_entry_notification_mirrors_ledger_entry(db, services):
    emma = make_creator(db)
    entry = services.ledger.append(emma.id, TransactionType.ADJUSTMENT, Decimal("2.00"), "Goodwill credit")
    db.commit()

    notif = services.notifier.record_for_entry(entry)

    assert notif.creator_id == emma.id
    assert notif.title == "Balance adjustment"
    assert notif.message == "Goodwill credit"
    assert notif.ledger_entry_id == entry.id
    assert notif.read is False


def test_backfill_covers_only_entries_without_notification(db, services):
    emma = make_creator(db)
    first = services.ledger.append(emma.id, TransactionType.ADJUSTMENT, Decimal("5.00"), "Opening balance")
    services.ledger.append(emma.id, TransactionType.ADJUSTMENT, Decimal("-1.00"), "Correction")
    db.commit()
    services.notifier.record_for_entry(first)

    assert services.notifier.backfill_missing_notifications() == 1
    assert services.notifier.backfill_missing_notifications() == 0

    backfilled = db.query(CreatorNotification).filter(CreatorNotification.ledger_entry_id != first.id).one()
    assert backfilled.read is True
    assert backfilled.message == "Correction"


def test_audit_serializes_decimals(db, services):
    services.notifier.audit("PAYOUT_BATCH_CREATE", "payout_batch", 3, details={"total_amount": Decimal("12.50")})

    row = db.query(AuditLog).one()
    assert row.actor == "system"
    assert row.resource_id == "3"
    assert row.details == {"total_amount": "12.50"}


def _slack(url="https://hooks.slack.test/abc"):
    send_slack_commission_notification(
        url,
        order_number=1001,
        order_total="100.00",
        commission_amount="15.00",
        attribution_source="discount_code",
        attribution_priority=1,
        request_id="req-1",
    )


def test_slack_message_is_posted(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return SimpleNamespace(status_code=200)

    monkeypatch.setattr(notification_service.requests, "post", fake_post)

    _slack()

    url, message, timeout = calls[0]
    assert url == "https://hooks.slack.test/abc"
    assert timeout == notification_service.SLACK_TIMEOUT_SECONDS
    assert "#1001" in message["blocks"][1]["fields"][0]["text"]


def test_slack_failure_is_swallowed(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("slack down")

    monkeypatch.setattr(notification_service.requests, "post", boom)

    _slack()


def test_slack_skipped_without_url(monkeypatch):
    def unexpected(*args, **kwargs):
        raise AssertionError("must not post")

    monkeypatch.setattr(notification_service.requests, "post", unexpected)

    _slack(url="")
