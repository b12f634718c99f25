# routes/orders.py

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import schemas
from auth import require_admin
from crud import order as crud_order
from database import get_db
from services import fulfillment
from stripe_service import PaymentError, StripeService, get_stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/orders",
    tags=["Admin Orders"],
    dependencies=[Depends(require_admin)],
    responses={404: {"description": "Not found"}},
)


@router.get("/{order_id}", response_model=schemas.AdminOrder)
def get_order(order_id: str, db: Session = Depends(get_db)):
    order = crud_order.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post("/{order_id}/fulfill")
def fulfill_order(order_id: str, db: Session = Depends(get_db)):
    """
    Marks a paid order as handed over to the customer.
    """
    try:
        fulfillment.mark_fulfilled(db, order_id)
    except fulfillment.OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except fulfillment.OrderStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True}


@router.post("/{order_id}/refund", response_model=schemas.RefundResponse)
def refund_order(
    order_id: str,
    db: Session = Depends(get_db),
    payments: StripeService = Depends(get_stripe_service),
):
    """
    Full refund through the payment provider, then stock goes back on the shelf.
    """
    try:
        refund_id = fulfillment.refund_order(db, order_id, payments)
    except fulfillment.OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except fulfillment.OrderStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (PaymentError, stripe.StripeError) as e:
        logger.exception("Refund failed for order %s", order_id)
        raise HTTPException(status_code=502, detail=f"Refund failed: {e}")
    return {"ok": True, "refund_id": refund_id}
