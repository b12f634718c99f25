# services/fulfillment.py
"""
Order fulfillment reconciliation.

A completed checkout session becomes a paid order: the cart carried in the
session metadata is re-validated against current stock, the order row gets a
snapshot of the purchased items with computed totals, and each product is
decremented with an inventory event. The order status is the only
idempotency guard: anything that is no longer ``pending`` has already been
processed and is left alone.

The refund path is the compensation: stock goes back up per snapshot item
and the order is marked refunded.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import stripe
from sqlalchemy.orm import Session

import models
from crud import order as crud_order
from crud import product as crud_product
from inventory_service import InventoryService
from stripe_service import PaymentError, StripeService
from utils import from_cents, non_negative_cents, parse_packed_cart, to_cents

logger = logging.getLogger(__name__)

REFUNDABLE = {models.OrderStatus.PAID.value, models.OrderStatus.FULFILLED.value}


class FulfillmentError(Exception):
    """The session cannot be turned into a paid order (bad cart, oversell, no order row)."""


class OrderNotFoundError(LookupError):
    """No order row with the given id."""


class OrderStateError(Exception):
    """The requested transition is not allowed from the order's current status."""


@dataclass
class FulfillmentResult:
    order_id: str
    order_number: Optional[str] = None
    duplicate: bool = False


def _status(order: models.Order) -> str:
    return str(order.status or "").lower()


def _find_target_order(db: Session, session_id: str, meta_order_id: str) -> Optional[models.Order]:
    # The order id written into the metadata at checkout wins over the session match.
    if meta_order_id:
        return crud_order.get_order(db, meta_order_id)
    if session_id:
        return crud_order.get_order_by_session(db, session_id)
    return None


def fulfill_checkout_session(db: Session, session: Mapping[str, Any]) -> FulfillmentResult:
    """
    Marks the order behind a completed checkout session as paid and takes the
    purchased quantities out of stock. Safe to call more than once for the
    same session (webhook redelivery, success-page confirmation).
    """
    session_id = str(session.get("id") or "")
    metadata = session.get("metadata") or {}
    meta_order_id = str(metadata.get("order_id") or "")

    existing = crud_order.get_order_by_session(db, session_id) if session_id else None
    if existing is not None and _status(existing) != models.OrderStatus.PENDING.value:
        logger.info("Session %s already processed (order %s is %s)", session_id, existing.order_id, existing.status)
        return FulfillmentResult(existing.order_id, existing.order_number, duplicate=True)

    order = _find_target_order(db, session_id, meta_order_id)
    if order is not None and _status(order) != models.OrderStatus.PENDING.value:
        logger.info("Order %s already %s; skipping session %s", order.order_id, order.status, session_id)
        return FulfillmentResult(order.order_id, order.order_number, duplicate=True)

    wanted = parse_packed_cart(metadata.get("cart"))
    if not wanted:
        raise FulfillmentError("No cart metadata found on session.")

    # Reload products (server-trusted) and re-check availability.
    products = crud_product.get_products_by_ids(db, [pid for pid, _ in wanted])
    if not products:
        raise FulfillmentError("Products not found for order.")

    totals = Counter()
    for product_id, qty in wanted:
        totals[product_id] += qty
    for product_id, qty in totals.items():
        p = products.get(product_id)
        if p is None:
            raise FulfillmentError(f"Missing product in order validation: {product_id}")
        if not p.is_active:
            raise FulfillmentError(f"Inactive product purchased: {p.name}")
        if p.quantity is not None and p.quantity < qty:
            raise FulfillmentError(f"Oversell detected for: {p.name}")

    if order is None:
        raise FulfillmentError(f"No order found for session {session_id or '?'}.")

    items = [
        {
            "product_id": product_id,
            "quantity": qty,
            "unit_price_cents": to_cents(products[product_id].price),
            "name": products[product_id].name,
        }
        for product_id, qty in wanted
    ]

    amount_total_cents = int(session.get("amount_total") or 0)
    subtotal_cents = sum(it["unit_price_cents"] * it["quantity"] for it in items)
    shipping_cents = non_negative_cents(metadata.get("shipping_cost_cents"))
    promo_cents = non_negative_cents(metadata.get("promo_discount_cents"))
    tax_cents = max(0, amount_total_cents - (subtotal_cents - promo_cents) - shipping_cents)

    customer_details = session.get("customer_details") or {}
    payment_intent = session.get("payment_intent")
    promo_code = metadata.get("promo_code")
    customer_email = metadata.get("customer_email")

    order.stripe_session_id = session_id or order.stripe_session_id
    order.stripe_email = customer_details.get("email") or session.get("customer_email")
    order.items = items
    order.subtotal = from_cents(subtotal_cents)
    order.tax = from_cents(tax_cents)
    order.shipping_cost = from_cents(shipping_cents)
    order.promo_discount = from_cents(promo_cents)
    order.promo_code = promo_code if isinstance(promo_code, str) and promo_code else None
    order.total = from_cents(amount_total_cents)
    order.amount_total_cents = amount_total_cents
    order.currency = session.get("currency") or "cad"
    order.payment_method = "stripe"
    order.payment_id = payment_intent if isinstance(payment_intent, str) else None
    order.status = models.OrderStatus.PAID.value
    order.purchase_date = datetime.now(timezone.utc)
    # Only overwrite the contact email when the session actually carries one.
    if isinstance(customer_email, str) and customer_email:
        order.customer_email = customer_email
    if not order.customer_name and customer_details.get("name"):
        order.customer_name = customer_details.get("name")
    if not order.customer_phone and customer_details.get("phone"):
        order.customer_phone = customer_details.get("phone")

    inventory = InventoryService(db)
    for product_id, qty in wanted:
        inventory.record_sale(products[product_id], qty, order.order_id)

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)

    logger.info("Order %s (%s) paid via session %s", order.order_number, order.order_id, session_id)
    return FulfillmentResult(order.order_id, order.order_number, duplicate=False)


# ---------------- compensating refund path ----------------

def apply_refund(db: Session, order: models.Order, refund_id: Optional[str] = None) -> models.Order:
    """
    Puts the snapshot quantities back in stock and marks the order refunded.
    An order that is already refunded is returned untouched.
    """
    if _status(order) == models.OrderStatus.REFUNDED.value:
        logger.info("Order %s already refunded", order.order_id)
        return order

    snapshot = order.items or []
    products = crud_product.get_products_by_ids(db, [it.get("product_id") for it in snapshot])
    inventory = InventoryService(db)
    for it in snapshot:
        product = products.get(it.get("product_id"))
        if product is None:
            logger.warning("Refund of order %s: product %s no longer exists; not restocked",
                           order.order_id, it.get("product_id"))
            continue
        inventory.restock_refund(product, int(it.get("quantity") or 0), order.order_id)

    order.status = models.OrderStatus.REFUNDED.value
    order.refunded_at = datetime.now(timezone.utc)
    if refund_id:
        order.stripe_refund_id = refund_id

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("Order %s refunded (refund %s)", order.order_id, refund_id)
    return order


def _mark_disputed(db: Session, order: models.Order) -> None:
    order.status = models.OrderStatus.DISPUTED.value
    db.commit()


def refund_order(db: Session, order_id: str, payments: StripeService) -> str:
    """
    Admin refund: full refund with the payment provider, then the stock
    compensation. Returns the provider refund id.
    """
    order = crud_order.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    if not order.payment_id:
        raise OrderStateError("Order missing payment_id (Stripe payment_intent).")
    if _status(order) not in REFUNDABLE:
        raise OrderStateError("Only paid/fulfilled orders can be refunded.")

    try:
        disputed = payments.latest_charge_disputed(order.payment_id)
    except PaymentError as e:
        raise OrderStateError(str(e)) from e
    except stripe.StripeError:
        # The pre-check is advisory; the refund call below reports real failures.
        logger.warning("Dispute pre-check failed for order %s", order_id, exc_info=True)
        disputed = False

    if disputed:
        _mark_disputed(db, order)
        raise OrderStateError(
            "This payment has a dispute/chargeback. Stripe does not allow refunds on charged back payments."
        )

    try:
        refund = payments.create_refund(order.payment_id)
    except PaymentError as e:
        if "charged back" in str(e).lower():
            _mark_disputed(db, order)
            raise OrderStateError(
                "This payment was charged back (dispute). Stripe does not allow refunds for chargebacks."
            ) from e
        raise

    # The refund webhook may have landed while the provider call was in flight.
    db.refresh(order)
    apply_refund(db, order, refund.get("id"))
    return refund.get("id")


def refund_by_payment_intent(db: Session, payment_intent_id: str, refund_id: Optional[str] = None) -> Optional[models.Order]:
    """Compensation triggered by the provider's refund notification."""
    if not payment_intent_id:
        return None
    order = crud_order.get_order_by_payment_id(db, payment_intent_id)
    if order is None:
        logger.info("No order for refunded payment %s", payment_intent_id)
        return None
    status = _status(order)
    if status == models.OrderStatus.REFUNDED.value:
        return order
    if status not in REFUNDABLE:
        logger.warning("Ignoring refund for order %s in status %s", order.order_id, order.status)
        return None
    return apply_refund(db, order, refund_id)


def mark_disputed_by_payment_intent(db: Session, payment_intent_id: str) -> Optional[models.Order]:
    if not payment_intent_id:
        return None
    order = crud_order.get_order_by_payment_id(db, payment_intent_id)
    if order is None:
        logger.info("No order for disputed payment %s", payment_intent_id)
        return None
    if _status(order) != models.OrderStatus.DISPUTED.value:
        _mark_disputed(db, order)
        logger.warning("Order %s marked disputed", order.order_id)
    return order


def mark_fulfilled(db: Session, order_id: str) -> models.Order:
    order = crud_order.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    if _status(order) != models.OrderStatus.PAID.value:
        raise OrderStateError("Only paid orders can be fulfilled.")
    order.status = models.OrderStatus.FULFILLED.value
    order.fulfilled_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(order)
    return order

