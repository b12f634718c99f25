"""Shared fixtures for the storefront test suite."""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from decimal import Decimal
from typing import Any

# Settings are read at import time; point everything at an in-memory DB and
# test secrets before any app module is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["SQUARE_WEBHOOK_SIGNATURE_KEY"] = "square-test-key"
os.environ["SQUARE_WEBHOOK_NOTIFICATION_URL"] = "https://shop.test/api/webhooks/square"
os.environ["SQUARE_LOCATION_ID"] = "LOC1"
os.environ["MONTHLY_DROP_CRON_SECRET"] = "monthly-secret"
os.environ["BARN_BURNER_CRON_SECRET"] = "barn-secret"

import pytest
from fastapi.testclient import TestClient
from jose import jwt

import models
from database import Base, SessionLocal, engine
from main import app
from stripe_service import get_stripe_service

WEBHOOK_SECRET = "whsec_test_secret"


class FakeStripe:
    """Stands in for StripeService; records calls and returns canned objects."""

    def __init__(self):
        self.sessions: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.refunds: list[str] = []
        self.disputed = False
        self.refund_error: Exception | None = None
        self.precheck_error: Exception | None = None

    def create_checkout_session(self, **params):
        self.created.append(params)
        sid = f"cs_test_{len(self.created)}"
        return {"id": sid, "url": f"https://checkout.stripe.test/{sid}"}

    def retrieve_checkout_session(self, session_id):
        return self.sessions[session_id]

    def latest_charge_disputed(self, payment_intent_id):
        if self.precheck_error:
            raise self.precheck_error
        return self.disputed

    def create_refund(self, payment_intent_id):
        if self.refund_error:
            raise self.refund_error
        self.refunds.append(payment_intent_id)
        return {"id": f"re_{len(self.refunds)}", "payment_intent": payment_intent_id}


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def fake_stripe():
    return FakeStripe()


@pytest.fixture()
def client(fake_stripe):
    app.dependency_overrides[get_stripe_service] = lambda: fake_stripe
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_product(db):
    def _make(name="Oak Dresser", price="120.00", quantity=1, is_active=True, **extra):
        p = models.Product(name=name, price=Decimal(price), quantity=quantity, is_active=is_active, **extra)
        db.add(p)
        db.commit()
        db.refresh(p)
        return p
    return _make


@pytest.fixture()
def make_order(db):
    def _make(items=None, status="pending", session_id=None, **extra):
        o = models.Order(
            order_number=extra.pop("order_number", f"TB-20260101-{os.urandom(3).hex().upper()}"),
            status=status,
            items=items or [],
            stripe_session_id=session_id,
            **extra,
        )
        db.add(o)
        db.commit()
        db.refresh(o)
        return o
    return _make


@pytest.fixture()
def admin_headers(db):
    db.add(models.Profile(id="admin-user", email="owner@shop.test", is_admin=True))
    db.commit()
    token = jwt.encode({"sub": "admin-user", "aud": "authenticated"}, "test-jwt-secret", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def checkout_session(order, cart, amount_total, **extra) -> dict[str, Any]:
    """A completed checkout session payload shaped like the provider's."""
    metadata = {"order_id": order.order_id if order is not None else "", "cart": cart}
    metadata.update(extra.pop("metadata", {}))
    session = {
        "id": order.stripe_session_id if order is not None and order.stripe_session_id else "cs_test_1",
        "object": "checkout.session",
        "amount_total": amount_total,
        "currency": "cad",
        "payment_status": "paid",
        "payment_intent": "pi_test_1",
        "customer_details": {"email": "buyer@example.com", "name": "Pat Buyer", "phone": "555-0100"},
        "metadata": metadata,
    }
    session.update(extra)
    return session


def sign_stripe(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = timestamp or int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def stripe_event(event_type: str, obj: dict[str, Any]) -> bytes:
    return json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode()
