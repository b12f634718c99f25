# services/checkout_service.py
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

import models
from config import settings
from crud import order as crud_order
from crud import product as crud_product
from stripe_service import StripeService
from utils import clamp_quantity, from_cents, pack_cart, to_cents

logger = logging.getLogger(__name__)

MAX_CART_LINES = 50


class CheckoutError(ValueError):
    """The submitted cart cannot be checked out."""


def build_validated_order_items(db: Session, items: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Re-reads prices and stock for the requested lines (never trusting the
    client) and returns the item snapshot plus the subtotal in cents.
    Repeated lines for one product are checked against stock together, the
    same way fulfillment checks them.
    """
    if len(items) > MAX_CART_LINES:
        raise CheckoutError(f"Cart has too many lines (max {MAX_CART_LINES}).")
    wanted = [
        (str(it.get("product_id") or ""), clamp_quantity(it.get("quantity")))
        for it in items
    ]
    wanted = [(pid, qty) for pid, qty in wanted if pid]
    if not wanted:
        raise CheckoutError("Cart is empty.")

    products = crud_product.get_products_by_ids(db, [pid for pid, _ in wanted])
    if not products:
        raise CheckoutError("No products found for checkout.")

    totals = Counter()
    for product_id, qty in wanted:
        totals[product_id] += qty
    for product_id, qty in totals.items():
        p = products.get(product_id)
        if p is None:
            raise CheckoutError(f"Invalid product in cart: {product_id}")
        if not p.is_active:
            raise CheckoutError(f"Product is not active: {p.name}")
        if p.quantity is not None and p.quantity < qty:
            raise CheckoutError(f"Not enough stock for: {p.name}")

    order_items = [
        {
            "product_id": product_id,
            "quantity": qty,
            "unit_price_cents": to_cents(products[product_id].price),
            "name": products[product_id].name,
        }
        for product_id, qty in wanted
    ]
    subtotal = sum(it["unit_price_cents"] * it["quantity"] for it in order_items)
    return order_items, subtotal


def unique_product_ids(raw_ids: List[Any]) -> List[str]:
    ids = (str(x).strip() for x in raw_ids or [] if x is not None)
    return [pid for pid in dict.fromkeys(ids) if pid]


def stock_levels(db: Session, product_ids: List[str]) -> Dict[str, Optional[int]]:
    """Current quantity per product; None means stock is not tracked."""
    products = crud_product.get_products_by_ids(db, product_ids)
    return {pid: p.quantity for pid, p in products.items()}


def out_of_stock(db: Session, product_ids: List[str]) -> List[Dict[str, str]]:
    """Products in the cart whose tracked quantity has run out."""
    products = crud_product.get_products_by_ids(db, product_ids)
    return [
        {"id": p.id, "name": p.name}
        for p in products.values()
        if p.quantity is not None and p.quantity <= 0
    ]


def start_checkout(db: Session, payments: StripeService, items: List[Dict[str, Any]],
                   customer: Dict[str, Any], shipping_cost_cents: int = 0) -> Tuple[models.Order, str]:
    """
    Creates the pending order and the hosted payment session for it.
    Returns the order and the hosted checkout URL.
    """
    order_items, subtotal_cents = build_validated_order_items(db, items)
    currency = settings.currency.lower()

    order = crud_order.create_pending_order(
        db, order_items, from_cents(subtotal_cents), currency, customer,
    )
    order.shipping_cost = from_cents(shipping_cost_cents)

    line_items = [
        {
            "quantity": it["quantity"],
            "price_data": {
                "currency": currency,
                "product_data": {"name": it["name"]},
                "unit_amount": it["unit_price_cents"],
            },
        }
        for it in order_items
    ]
    metadata = {
        "order_id": order.order_id,
        "cart": pack_cart([(it["product_id"], it["quantity"]) for it in order_items]),
        "shipping_cost_cents": str(int(shipping_cost_cents)),
    }
    if customer.get("customer_email"):
        metadata["customer_email"] = customer["customer_email"]

    site_url = settings.site_url.rstrip("/")
    try:
        session = payments.create_checkout_session(
            line_items=line_items,
            metadata=metadata,
            success_url=f"{site_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site_url}/cart?canceled=1",
            customer_email=customer.get("customer_email"),
            shipping_cost_cents=shipping_cost_cents,
            currency=currency,
        )
    except Exception:
        db.rollback()
        raise

    order.stripe_session_id = session["id"]
    db.commit()
    db.refresh(order)
    logger.info("Checkout session %s started for order %s", session["id"], order.order_number)
    return order, session.get("url")
