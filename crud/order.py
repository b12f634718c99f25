# crud/order.py

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

import models
from utils import make_order_number


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.order_id == order_id).first()


def get_order_by_session(db: Session, session_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.stripe_session_id == session_id).first()


def get_order_by_payment_id(db: Session, payment_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.payment_id == payment_id).first()


def _unused_order_number(db: Session, max_tries: int = 10) -> str:
    for _ in range(max_tries):
        candidate = make_order_number()
        exists = db.query(models.Order.order_id).filter(models.Order.order_number == candidate).first()
        if exists is None:
            return candidate
    raise RuntimeError("Could not generate a unique order number after max_tries attempts")


def create_pending_order(db: Session, items: List[Dict[str, Any]], subtotal, currency: str,
                         customer: Dict[str, Any]) -> models.Order:
    """
    Inserts the order row at checkout start. The caller commits once the
    payment session id is known.
    """
    db_order = models.Order(
        order_number=_unused_order_number(db),
        status=models.OrderStatus.PENDING.value,
        items=items,
        subtotal=subtotal,
        total=subtotal,
        currency=currency,
        customer_name=customer.get("customer_name"),
        customer_email=customer.get("customer_email"),
        customer_phone=customer.get("customer_phone"),
        shipping_address=customer.get("shipping_address"),
        user_id=customer.get("user_id"),
    )
    db.add(db_order)
    db.flush()
    return db_order


def order_summary(order: models.Order) -> Dict[str, Any]:
    """Plain-dict copy of an order, safe to hand to a background task."""
    return {
        "order_id": order.order_id,
        "order_number": order.order_number,
        "status": order.status,
        "total": order.total,
        "currency": order.currency,
        "items": list(order.items or []),
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "customer_phone": order.customer_phone,
        "stripe_email": order.stripe_email,
        "shipping_address": order.shipping_address,
        "stripe_session_id": order.stripe_session_id,
    }
