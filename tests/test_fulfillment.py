"""Checkout-session fulfillment: paid status, snapshot, totals, stock decrements, idempotency."""

from __future__ import annotations

from decimal import Decimal

import pytest

import models
from conftest import checkout_session
from services import fulfillment


def _events(db, order_id):
    return db.query(models.InventoryEvent).filter(models.InventoryEvent.order_id == order_id).all()


class TestFulfillCheckoutSession:

    def test_marks_order_paid_and_snapshots_items(self, db, make_product, make_order):
        chair = make_product(name="Windsor Chair", price="45.50", quantity=3)
        table = make_product(name="Pine Table", price="200.00", quantity=1)
        order = make_order(session_id="cs_test_1")
        cart = f"{chair.id}:2,{table.id}:1"
        # 2 * 45.50 + 200 = 291.00, + 15.00 shipping, + 39.78 tax
        session = checkout_session(order, cart, amount_total=34578,
                                   metadata={"shipping_cost_cents": "1500"})

        result = fulfillment.fulfill_checkout_session(db, session)

        assert result.duplicate is False
        assert result.order_id == order.order_id
        db.expire_all()
        order = db.get(models.Order, order.order_id)
        assert order.status == "paid"
        assert order.items == [
            {"product_id": chair.id, "quantity": 2, "unit_price_cents": 4550, "name": "Windsor Chair"},
            {"product_id": table.id, "quantity": 1, "unit_price_cents": 20000, "name": "Pine Table"},
        ]
        assert order.subtotal == Decimal("291.00")
        assert order.shipping_cost == Decimal("15.00")
        assert order.tax == Decimal("39.78")
        assert order.total == Decimal("345.78")
        assert order.amount_total_cents == 34578
        assert order.payment_id == "pi_test_1"
        assert order.payment_method == "stripe"
        assert order.stripe_email == "buyer@example.com"
        assert order.purchase_date is not None

    def test_decrements_stock_and_logs_sale_events(self, db, make_product, make_order):
        chair = make_product(quantity=3)
        order = make_order(session_id="cs_test_1")

        fulfillment.fulfill_checkout_session(db, checkout_session(order, f"{chair.id}:2", amount_total=24000))

        db.expire_all()
        assert db.get(models.Product, chair.id).quantity == 1
        events = _events(db, order.order_id)
        assert len(events) == 1
        assert events[0].delta == -2
        assert events[0].reason == "sale"
        assert events[0].source == "stripe_web"
        assert events[0].product_id == chair.id

    def test_untracked_quantity_stays_null(self, db, make_product, make_order):
        lamp = make_product(name="Lamp", price="10.00", quantity=None)
        order = make_order(session_id="cs_test_1")

        fulfillment.fulfill_checkout_session(db, checkout_session(order, f"{lamp.id}:4", amount_total=4000))

        db.expire_all()
        assert db.get(models.Product, lamp.id).quantity is None
        assert [e.delta for e in _events(db, order.order_id)] == [-4]

    def test_second_delivery_is_a_duplicate(self, db, make_product, make_order):
        chair = make_product(quantity=2)
        order = make_order(session_id="cs_test_1")
        session = checkout_session(order, f"{chair.id}:1", amount_total=12000)

        first = fulfillment.fulfill_checkout_session(db, session)
        second = fulfillment.fulfill_checkout_session(db, session)

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.order_id == order.order_id
        db.expire_all()
        assert db.get(models.Product, chair.id).quantity == 1
        assert len(_events(db, order.order_id)) == 1

    @pytest.mark.parametrize("status", ["fulfilled", "refunded", "disputed"])
    def test_later_statuses_are_not_reprocessed(self, db, make_product, make_order, status):
        chair = make_product(quantity=2)
        order = make_order(session_id="cs_test_1", status=status)

        result = fulfillment.fulfill_checkout_session(db, checkout_session(order, f"{chair.id}:1", amount_total=12000))

        assert result.duplicate is True
        db.expire_all()
        assert db.get(models.Product, chair.id).quantity == 2
        assert db.get(models.Order, order.order_id).status == status

    def test_falls_back_to_session_match_without_order_id(self, db, make_product, make_order):
        chair = make_product(quantity=1)
        order = make_order(session_id="cs_test_1")
        session = checkout_session(order, f"{chair.id}:1", amount_total=12000, metadata={"order_id": ""})

        result = fulfillment.fulfill_checkout_session(db, session)

        assert result.order_id == order.order_id
        db.expire_all()
        assert db.get(models.Order, order.order_id).status == "paid"

    def test_oversell_is_rejected_without_changes(self, db, make_product, make_order):
        chair = make_product(name="Last Chair", quantity=1)
        order = make_order(session_id="cs_test_1")

        with pytest.raises(fulfillment.FulfillmentError, match="Oversell detected for: Last Chair"):
            fulfillment.fulfill_checkout_session(db, checkout_session(order, f"{chair.id}:2", amount_total=24000))

        db.rollback()
        db.expire_all()
        assert db.get(models.Product, chair.id).quantity == 1
        assert db.get(models.Order, order.order_id).status == "pending"

    def test_repeated_lines_are_checked_together(self, db, make_product, make_order):
        chair = make_product(name="Stool", quantity=1)
        order = make_order(session_id="cs_test_1")

        with pytest.raises(fulfillment.FulfillmentError, match="Oversell"):
            fulfillment.fulfill_checkout_session(
                db, checkout_session(order, f"{chair.id}:1,{chair.id}:1", amount_total=24000))

    def test_inactive_product_is_rejected(self, db, make_product, make_order):
        chair = make_product(name="Hidden Chair", is_active=False)
        order = make_order(session_id="cs_test_1")

        with pytest.raises(fulfillment.FulfillmentError, match="Inactive product purchased: Hidden Chair"):
            fulfillment.fulfill_checkout_session(db, checkout_session(order, f"{chair.id}:1", amount_total=12000))

    def test_missing_cart_metadata(self, db, make_order):
        order = make_order(session_id="cs_test_1")
        with pytest.raises(fulfillment.FulfillmentError, match="No cart metadata"):
            fulfillment.fulfill_checkout_session(db, checkout_session(order, "", amount_total=100))

    def test_unknown_product(self, db, make_product, make_order):
        chair = make_product()
        order = make_order(session_id="cs_test_1")
        with pytest.raises(fulfillment.FulfillmentError, match="Missing product"):
            fulfillment.fulfill_checkout_session(
                db, checkout_session(order, f"{chair.id}:1,does-not-exist:1", amount_total=100))

    def test_no_order_row(self, db, make_product):
        chair = make_product()
        session = checkout_session(None, f"{chair.id}:1", amount_total=12000)
        with pytest.raises(fulfillment.FulfillmentError, match="No order found"):
            fulfillment.fulfill_checkout_session(db, session)


class TestTotals:

    def test_promo_discount_and_bad_metadata(self, db, make_product, make_order):
        chair = make_product(price="100.00", quantity=5)
        order = make_order(session_id="cs_test_1")
        # subtotal 100, promo 10, shipping "abc" -> 0, total 103.50 -> tax 13.50
        session = checkout_session(order, f"{chair.id}:1", amount_total=10350, metadata={
            "promo_discount_cents": "1000",
            "promo_code": "BARN10",
            "shipping_cost_cents": "abc",
        })

        fulfillment.fulfill_checkout_session(db, session)

        db.expire_all()
        order = db.get(models.Order, order.order_id)
        assert order.promo_discount == Decimal("10.00")
        assert order.promo_code == "BARN10"
        assert order.shipping_cost == Decimal("0.00")
        assert order.tax == Decimal("13.50")

    def test_tax_never_negative(self, db, make_product, make_order):
        chair = make_product(price="100.00", quantity=5)
        order = make_order(session_id="cs_test_1")

        fulfillment.fulfill_checkout_session(db, checkout_session(order, f"{chair.id}:1", amount_total=5000))

        db.expire_all()
        assert db.get(models.Order, order.order_id).tax == Decimal("0.00")

    def test_customer_email_only_overwritten_when_present(self, db, make_product, make_order):
        chair = make_product(quantity=5)
        keep = make_order(session_id="cs_keep", customer_email="original@example.com")
        fulfillment.fulfill_checkout_session(db, checkout_session(keep, f"{chair.id}:1", amount_total=12000))

        replace = make_order(session_id="cs_replace", customer_email="original@example.com")
        fulfillment.fulfill_checkout_session(db, checkout_session(
            replace, f"{chair.id}:1", amount_total=12000, metadata={"customer_email": "new@example.com"},
            payment_intent="pi_test_2"))

        db.expire_all()
        assert db.get(models.Order, keep.order_id).customer_email == "original@example.com"
        assert db.get(models.Order, replace.order_id).customer_email == "new@example.com"
