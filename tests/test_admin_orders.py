"""Admin order actions: auth, lookup, fulfill and refund."""

from __future__ import annotations

from jose import jwt

import models
from stripe_service import PaymentError


def _token(sub: str, secret: str = "test-jwt-secret", aud: str = "authenticated") -> dict:
    return {"Authorization": f"Bearer {jwt.encode({'sub': sub, 'aud': aud}, secret, algorithm='HS256')}"}


def _sold_order(make_product, make_order, status="paid"):
    chest = make_product(name="Chest", quantity=0)
    return chest, make_order(status=status, payment_id="pi_test_1", items=[
        {"product_id": chest.id, "quantity": 1, "unit_price_cents": 12000, "name": "Chest"}])


class TestAuth:

    def test_no_token(self, client, make_order):
        order = make_order()
        assert client.get(f"/api/admin/orders/{order.order_id}").status_code == 401

    def test_bad_signature(self, client, make_order):
        order = make_order()
        r = client.get(f"/api/admin/orders/{order.order_id}", headers=_token("admin-user", secret="nope"))
        assert r.status_code == 401

    def test_wrong_audience(self, client, db, make_order):
        db.add(models.Profile(id="admin-user", is_admin=True))
        db.commit()
        order = make_order()
        r = client.get(f"/api/admin/orders/{order.order_id}", headers=_token("admin-user", aud="anon"))
        assert r.status_code == 401

    def test_non_admin(self, client, db, make_order):
        db.add(models.Profile(id="shopper", email="s@example.com", is_admin=False))
        db.commit()
        order = make_order()
        r = client.post(f"/api/admin/orders/{order.order_id}/fulfill", headers=_token("shopper"))
        assert r.status_code == 403

    def test_unknown_profile(self, client, make_order):
        order = make_order()
        r = client.get(f"/api/admin/orders/{order.order_id}", headers=_token("stranger"))
        assert r.status_code == 403


class TestAdminOrders:

    def test_get(self, client, admin_headers, make_product, make_order):
        _, order = _sold_order(make_product, make_order)

        r = client.get(f"/api/admin/orders/{order.order_id}", headers=admin_headers)

        assert r.status_code == 200
        assert r.json()["payment_id"] == "pi_test_1"
        assert r.json()["status"] == "paid"

    def test_get_missing(self, client, admin_headers):
        assert client.get("/api/admin/orders/missing", headers=admin_headers).status_code == 404

    def test_fulfill(self, client, db, admin_headers, make_product, make_order):
        _, order = _sold_order(make_product, make_order)

        r = client.post(f"/api/admin/orders/{order.order_id}/fulfill", headers=admin_headers)

        assert r.json() == {"ok": True}
        db.expire_all()
        assert db.get(models.Order, order.order_id).status == "fulfilled"

    def test_fulfill_pending(self, client, admin_headers, make_order):
        order = make_order(status="pending")
        r = client.post(f"/api/admin/orders/{order.order_id}/fulfill", headers=admin_headers)
        assert r.status_code == 400

    def test_refund(self, client, db, admin_headers, make_product, make_order, fake_stripe):
        chest, order = _sold_order(make_product, make_order, status="fulfilled")

        r = client.post(f"/api/admin/orders/{order.order_id}/refund", headers=admin_headers)

        assert r.status_code == 200
        assert r.json() == {"ok": True, "refund_id": "re_1"}
        db.expire_all()
        assert db.get(models.Order, order.order_id).status == "refunded"
        assert db.get(models.Product, chest.id).quantity == 1

    def test_refund_disputed(self, client, db, admin_headers, make_product, make_order, fake_stripe):
        _, order = _sold_order(make_product, make_order)
        fake_stripe.disputed = True

        r = client.post(f"/api/admin/orders/{order.order_id}/refund", headers=admin_headers)

        assert r.status_code == 400
        db.expire_all()
        assert db.get(models.Order, order.order_id).status == "disputed"

    def test_refund_provider_failure(self, client, db, admin_headers, make_product, make_order, fake_stripe):
        _, order = _sold_order(make_product, make_order)
        fake_stripe.refund_error = PaymentError("Insufficient balance")

        r = client.post(f"/api/admin/orders/{order.order_id}/refund", headers=admin_headers)

        assert r.status_code == 502
        db.expire_all()
        assert db.get(models.Order, order.order_id).status == "paid"

    def test_refund_missing(self, client, admin_headers):
        assert client.post("/api/admin/orders/missing/refund", headers=admin_headers).status_code == 404
