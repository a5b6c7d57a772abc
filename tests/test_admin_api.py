from decimal import Decimal

import pytest

from models.notifications import AuditLog, CreatorNotification

from conftest import auth_header, make_admin, make_creator, paid_commission


@pytest.fixture
def admin_headers(client, db):
    make_admin(db)
    r = client.post("/admin/login", json={"email": "ops@example.com", "password": "s3cret-pass"})
    assert r.status_code == 200
    return auth_header(r.json()["access_token"])


def _creator_headers(client, email="emma@example.com", code="EMMA15"):
    r = client.post("/creator/login", json={"email": email, "discount_code": code})
    assert r.status_code == 200
    return auth_header(r.json()["access_token"])


def test_admin_login_rejects_wrong_password(client, db):
    make_admin(db)

    r = client.post("/admin/login", json={"email": "ops@example.com", "password": "nope-nope"})

    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid admin credentials."


def test_admin_me(client, admin_headers):
    r = client.get("/admin/me", headers=admin_headers)

    assert r.status_code == 200
    assert r.json()["email"] == "ops@example.com"


def test_only_superadmin_creates_admins(client, admin_headers):
    r = client.post(
        "/admin/admins",
        json={"email": "new@example.com", "password": "longenough"},
        headers=admin_headers,
    )
    assert r.status_code == 403


def test_admin_routes_require_a_token(client):
    assert client.get("/admin/creators/").status_code in (401, 403)


def test_creator_token_is_refused_on_admin_routes(client, db):
    make_creator(db)
    headers = _creator_headers(client)

    r = client.get("/admin/creators/", headers=headers)

    assert r.status_code == 403


def test_create_and_update_creator(client, db, admin_headers):
    r = client.post(
        "/admin/creators/",
        json={
            "name": "Lucia",
            "email": "lucia@example.com",
            "commission_rate": "0.20",
            "discount_code": " lucia20 ",
            "payout_destination": "IBAN-LUCIA",
            "bank_verified": True,
        },
        headers=admin_headers,
    )
    assert r.status_code == 201
    created = r.json()
    assert created["discount_code"] == "LUCIA20"
    assert created["status"] == "active"

    dup = client.post(
        "/admin/creators/",
        json={"name": "Other", "email": "other@example.com", "commission_rate": "0.1", "discount_code": "LUCIA20"},
        headers=admin_headers,
    )
    assert dup.status_code == 409

    r = client.patch(f"/admin/creators/{created['id']}", json={"commission_rate": "0.25"}, headers=admin_headers)
    assert r.status_code == 200
    assert Decimal(r.json()["commission_rate"]) == Decimal("0.25")

    actions = [a.action for a in db.query(AuditLog).order_by(AuditLog.id).all()]
    assert actions == ["CREATOR_CREATE", "CREATOR_UPDATE"]


def test_unknown_creator_is_404(client, admin_headers):
    assert client.get("/admin/creators/999", headers=admin_headers).status_code == 404


def test_batch_lifecycle_over_http(client, db, services, rail, admin_headers):
    make_creator(db)
    paid_commission(services, db, "EMMA15", order_id=1)

    r = client.post("/admin/payouts/batches", json={"note": "January"}, headers=admin_headers)
    assert r.status_code == 201
    batch = r.json()
    assert batch["status"] == "draft"
    assert batch["total_amount"] == "15.00"

    early = client.post(f"/admin/payouts/batches/{batch['batch_id']}/execute", headers=admin_headers)
    assert early.status_code == 409
    assert early.json()["current_state"] == "draft"

    r = client.post(f"/admin/payouts/batches/{batch['batch_id']}/approve", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "approved"

    r = client.post(f"/admin/payouts/batches/{batch['batch_id']}/execute", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert len(rail.calls) == 1

    again = client.post(f"/admin/payouts/batches/{batch['batch_id']}/execute", headers=admin_headers)
    assert again.json()["replayed"] is True
    assert len(rail.calls) == 1

    detail = client.get(f"/admin/payouts/batches/{batch['batch_id']}", headers=admin_headers).json()
    assert detail["counts"]["completed"] == 1
    assert detail["items"][0]["transfer_id"] == "tr_1"

    summary = client.get("/admin/payouts/summary", headers=admin_headers).json()
    assert Decimal(summary["total_payouts_sent"]) == Decimal("-15.00")
    assert summary["entries_by_type"]["payout_sent"] == 1


def test_empty_batch_is_422(client, admin_headers):
    r = client.post("/admin/payouts/batches", json={}, headers=admin_headers)

    assert r.status_code == 422
    assert r.json()["errors"] == ["No payable commissions to include in a batch"]


def test_ledger_adjustment_creates_entry_and_notification(client, db, admin_headers):
    emma = make_creator(db)

    r = client.post(
        f"/admin/creators/{emma.id}/ledger/adjustments",
        json={"amount": "-4.50", "description": "Chargeback order 1001"},
        headers=admin_headers,
    )

    assert r.status_code == 201
    assert r.json()["transaction_type"] == "adjustment"
    assert Decimal(r.json()["balance_after"]) == Decimal("-4.50")
    assert db.query(CreatorNotification).filter_by(creator_id=emma.id).count() == 1


def test_verify_ledger_endpoint(client, db, services, admin_headers):
    emma = make_creator(db)
    paid_commission(services, db, "EMMA15", order_id=1)

    r = client.post(f"/admin/creators/{emma.id}/ledger/verify", headers=admin_headers)

    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_creator_portal(client, db, services):
    emma = make_creator(db)
    paid_commission(services, db, "EMMA15", order_id=1)
    headers = _creator_headers(client)

    balance = client.get("/creator/me/balance", headers=headers).json()
    assert balance["creator_id"] == emma.id
    assert Decimal(balance["balance"]) == Decimal("15.00")

    ledger = client.get("/creator/me/ledger", headers=headers).json()
    assert [e["transaction_type"] for e in ledger] == ["commission_earned"]

    commissions = client.get("/creator/me/commissions", headers=headers).json()
    assert commissions[0]["status"] == "payable"

    notifications = client.get("/creator/me/notifications?unread_only=true", headers=headers).json()
    assert len(notifications) == 1
    r = client.post(f"/creator/me/notifications/{notifications[0]['id']}/read", headers=headers)
    assert r.json()["read"] is True
    assert client.get("/creator/me/notifications?unread_only=true", headers=headers).json() == []


def test_creator_login_needs_matching_code(client, db):
    make_creator(db)

    r = client.post("/creator/login", json={"email": "emma@example.com", "discount_code": "WRONG"})

    assert r.status_code == 401


def test_notification_backfill_endpoint(client, db, services, admin_headers):
    make_creator(db)
    paid_commission(services, db, "EMMA15", order_id=1)
    db.query(CreatorNotification).delete()
    db.commit()

    r = client.post("/admin/payouts/notifications/backfill", headers=admin_headers)

    assert r.json() == {"created": 1}
    db.expire_all()
    assert db.query(CreatorNotification).one().read is True
