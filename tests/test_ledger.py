from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from app.errors import LedgerFrozenError, NotFoundError
from app.ledger import CommissionLedger
from models.creators import Creator
from models.ledger import LedgerEntry, TransactionType
from models.notifications import AuditLog

from conftest import make_creator


def test_balance_after_is_running_sum(db, services):
    creator = make_creator(db)
    amounts = ["15.00", "7.35", "-10.00", "0.01", "-2.36", "120.00"]

    for a in amounts:
        services.ledger.append(creator.id, TransactionType.ADJUSTMENT, Decimal(a), "test")
    db.commit()

    entries = (
        db.query(LedgerEntry)
        .filter(LedgerEntry.creator_id == creator.id)
        .order_by(LedgerEntry.entry_number.asc())
        .all()
    )
    running = Decimal("0.00")
    for n, entry in enumerate(entries, start=1):
        running += entry.amount
        assert entry.entry_number == n
        assert entry.balance_after == running

    assert services.ledger.get_balance(creator.id) == sum(Decimal(a) for a in amounts)


def test_balance_is_zero_without_entries(db, services):
    creator = make_creator(db)
    assert services.ledger.get_balance(creator.id) == Decimal("0.00")


def test_get_ledger_is_reverse_chronological_and_paginated(db, services):
    creator = make_creator(db)
    for i in range(5):
        services.ledger.append(creator.id, TransactionType.ADJUSTMENT, Decimal("1.00"), f"entry {i}")
    db.commit()

    page = services.ledger.get_ledger(creator.id, limit=2, offset=1)

    assert [e.entry_number for e in page] == [4, 3]


def test_append_for_unknown_creator(db, services):
    with pytest.raises(NotFoundError):
        services.ledger.append(999, TransactionType.ADJUSTMENT, Decimal("1.00"), "nobody")


def test_entries_cannot_be_updated_or_deleted(db, services):
    creator = make_creator(db)
    entry = services.ledger.append(creator.id, TransactionType.COMMISSION_EARNED, Decimal("15.00"), "c")
    db.commit()

    entry.amount = Decimal("150.00")
    with pytest.raises(RuntimeError):
        db.flush()
    db.rollback()

    db.delete(entry)
    with pytest.raises(RuntimeError):
        db.flush()
    db.rollback()

    assert services.ledger.get_balance(creator.id) == Decimal("15.00")


def test_integrity_violation_freezes_creator(db, services):
    creator = make_creator(db)
    services.ledger.append(creator.id, TransactionType.COMMISSION_EARNED, Decimal("15.00"), "a")
    services.ledger.append(creator.id, TransactionType.COMMISSION_EARNED, Decimal("5.00"), "b")
    db.commit()
    assert services.ledger.verify_integrity(creator.id).ok

    # Corruption outside the ORM
    db.execute(
        text("UPDATE financial_ledger SET balance_after = 99 WHERE creator_id = :c AND entry_number = 2"),
        {"c": creator.id},
    )
    db.commit()

    report = services.ledger.verify_integrity(creator.id)

    assert not report.ok
    assert report.entries_checked == 2
    db.expire_all()
    assert db.get(Creator, creator.id).ledger_frozen is True
    assert db.query(AuditLog).filter(AuditLog.action == "LEDGER_INTEGRITY_VIOLATION").count() == 1

    with pytest.raises(LedgerFrozenError):
        services.ledger.append(creator.id, TransactionType.ADJUSTMENT, Decimal("1.00"), "blocked")


def test_financial_summary_totals(db, services):
    creator = make_creator(db)
    services.ledger.append(creator.id, TransactionType.COMMISSION_EARNED, Decimal("15.00"), "a")
    services.ledger.append(creator.id, TransactionType.COMMISSION_EARNED, Decimal("10.00"), "b")
    services.ledger.append(creator.id, TransactionType.PAYOUT_SENT, Decimal("-14.50"), "p")
    services.ledger.append(creator.id, TransactionType.PAYOUT_FEE, Decimal("-0.50"), "f")
    db.commit()

    summary = services.ledger.financial_summary()

    assert summary["total_commissions_earned"] == "25.00"
    assert summary["total_payouts_sent"] == "-14.50"
    assert summary["total_fees"] == "-0.50"
    assert summary["entries_by_type"]["commission_earned"] == 2
    assert services.ledger.balances_by_creator() == {creator.id: Decimal("10.00")}


def test_stale_append_from_second_session_is_rejected(session_factory, monkeypatch):
    db_a = session_factory()
    db_b = session_factory()
    try:
        creator = make_creator(db_a)
        ledger_a = CommissionLedger(db_a)
        ledger_b = CommissionLedger(db_b)
        ledger_a.append(creator.id, TransactionType.ADJUSTMENT, Decimal("10.00"), "first writer")
        db_a.commit()

        # Second writer read the tail before the first append committed
        monkeypatch.setattr(ledger_b, "_last_entry", lambda creator_id: None)
        with pytest.raises(IntegrityError):
            ledger_b.append(creator.id, TransactionType.ADJUSTMENT, Decimal("5.00"), "stale writer")
        db_b.rollback()

        entries = db_a.query(LedgerEntry).filter(LedgerEntry.creator_id == creator.id).all()
        assert [(e.entry_number, e.balance_after) for e in entries] == [(1, Decimal("10.00"))]
        report = ledger_a.verify_integrity(creator.id)
        assert report.ok
        assert report.entries_checked == 1

        # Retried with a fresh read, the append chains after the first
        retry = CommissionLedger(db_b).append(creator.id, TransactionType.ADJUSTMENT, Decimal("5.00"), "retry")
        db_b.commit()
        assert retry.entry_number == 2
        assert retry.balance_after == Decimal("15.00")
        assert ledger_a.verify_integrity(creator.id).ok
    finally:
        db_a.close()
        db_b.close()
