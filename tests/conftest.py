import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_backoffice.sqlite3")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("SHOPIFY_WEBHOOK_SECRET", "")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

from app.attribution import AttributionResolver
from app.commission_service import CommissionService, MaturityPolicy
from app.config import Settings
from app.idempotency import IdempotencyGate
from app.ledger import CommissionLedger
from app.notification_service import Notifier
from app.payment_rail import PermanentPaymentError, TransferResult, TransientPaymentError
from app.payout_service import PayoutBatchService
from models import Base
from models.creators import Creator, CreatorStatus
from schemas.shopify import ShopifyOrderPayload

ORDER_DATE = datetime(2026, 1, 10, 10, 0, tzinfo=timezone.utc)
AFTER_HOLD = ORDER_DATE + timedelta(days=30)


class FakeRail:
    """In-memory payment rail that deduplicates on the idempotency key like a real one."""

    def __init__(self):
        self.calls = []
        self.transfers = {}
        self.permanent_failures = {}
        self.transient_failures = {}
        self.always_transient = set()

    def send_transfer(self, *, idempotency_key, destination, amount, currency, reference=None):
        self.calls.append(
            {
                "idempotency_key": idempotency_key,
                "destination": destination,
                "amount": amount,
                "currency": currency,
            }
        )
        if destination in self.permanent_failures:
            raise PermanentPaymentError(self.permanent_failures[destination])
        if destination in self.always_transient:
            raise TransientPaymentError("rail timeout")
        pending = self.transient_failures.get(destination, 0)
        if pending:
            self.transient_failures[destination] = pending - 1
            raise TransientPaymentError("rail returned 503")

        if idempotency_key not in self.transfers:
            self.transfers[idempotency_key] = TransferResult(
                transfer_id=f"tr_{len(self.transfers) + 1}",
                status="succeeded",
            )
        return self.transfers[idempotency_key]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'backoffice.sqlite3'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def rail():
    return FakeRail()


@pytest.fixture
def test_settings():
    return Settings(
        payout_fee=Decimal("0.00"),
        payout_max_attempts=3,
        payout_retry_backoff_seconds=0,
        commission_hold_days=14,
        idempotency_stale_seconds=300,
    )


def build_services(db, rail, settings, clock=None):
    notifier = Notifier(db)
    ledger = CommissionLedger(db, notifier=notifier)
    gate_kwargs = {"stale_after_seconds": settings.idempotency_stale_seconds}
    if clock is not None:
        gate_kwargs["clock"] = clock
    gate = IdempotencyGate(db, **gate_kwargs)
    commissions = CommissionService(
        db,
        resolver=AttributionResolver(db),
        ledger=ledger,
        notifier=notifier,
        gate=gate,
        policy=MaturityPolicy(settings.commission_hold_days),
        default_commission_rate=settings.default_commission_rate,
    )
    payouts = PayoutBatchService(
        db,
        rail=rail,
        ledger=ledger,
        notifier=notifier,
        gate=gate,
        settings=settings,
        sleep=lambda seconds: None,
    )
    return SimpleNamespace(
        notifier=notifier,
        ledger=ledger,
        gate=gate,
        commissions=commissions,
        payouts=payouts,
    )


@pytest.fixture
def services(db, rail, test_settings):
    return build_services(db, rail, test_settings)


def make_creator(
    db,
    name="Emma",
    email=None,
    rate="0.15",
    code="EMMA15",
    destination=None,
    verified=True,
    status=CreatorStatus.ACTIVE,
):
    creator = Creator(
        name=name,
        email=email or f"{name.lower()}@example.com",
        commission_rate=Decimal(rate),
        discount_code=code,
        status=status,
        payout_destination=destination if destination is not None else f"IBAN-{name.upper()}",
        bank_verified=verified,
        ledger_frozen=False,
    )
    db.add(creator)
    db.commit()
    db.refresh(creator)
    return creator


def order_body(
    order_id=5550001,
    order_number=1001,
    subtotal="100.00",
    total="110.00",
    codes=("EMMA15",),
    note_attributes=None,
    cart_token=None,
    created_at=ORDER_DATE,
):
    body = {
        "id": order_id,
        "order_number": order_number,
        "email": "buyer@example.com",
        "subtotal_price": subtotal,
        "total_price": total,
        "currency": "EUR",
        "financial_status": "paid",
        "note_attributes": note_attributes or [],
        "discount_codes": [{"code": c, "amount": "15.00", "type": "percentage"} for c in codes],
        "cart_token": cart_token,
        "created_at": created_at.isoformat() if created_at else None,
    }
    return body


def order_payload(**kwargs) -> ShopifyOrderPayload:
    return ShopifyOrderPayload.model_validate(order_body(**kwargs))


def paid_commission(services, db, creator_code, order_id, order_number=1001, subtotal="100.00"):
    """Paid-order webhook + maturity: leaves one payable commission."""
    services.commissions.handle_order_paid(
        order_payload(order_id=order_id, order_number=order_number, subtotal=subtotal, codes=(creator_code,))
    )
    services.commissions.promote_matured_commissions(now=AFTER_HOLD)


# ---------------------------------------------------------
# HTTP
# ---------------------------------------------------------
@pytest.fixture
def client(session_factory, rail):
    from fastapi.testclient import TestClient

    from app.db import get_db
    from app.deps import get_payment_rail
    from app.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_rail] = lambda: rail
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_admin(db, email="ops@example.com", password="s3cret-pass", superadmin=False):
    from app.passwords import hash_password
    from models.admin import Admin

    admin = Admin(email=email, hashed_password=hash_password(password), is_active=True, is_superadmin=superadmin)
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}
