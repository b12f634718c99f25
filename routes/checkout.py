# routes/checkout.py

import logging

import stripe
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

import schemas
from crud import order as crud_order
from database import get_db
from routes.webhooks import queue_admin_email
from services import checkout_service, fulfillment
from stripe_service import StripeService, get_stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Checkout"])


@router.post("/checkout", response_model=schemas.CheckoutResponse)
def create_checkout(
    body: schemas.CheckoutRequest,
    db: Session = Depends(get_db),
    payments: StripeService = Depends(get_stripe_service),
):
    """
    Creates a pending order from the cart and returns the hosted payment page URL.
    """
    customer = body.model_dump(include={"customer_name", "customer_email", "customer_phone", "shipping_address"})
    try:
        order, url = checkout_service.start_checkout(
            db, payments,
            items=[it.model_dump() for it in body.items],
            customer=customer,
            shipping_cost_cents=body.shipping_cost_cents,
        )
    except checkout_service.CheckoutError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except stripe.StripeError as e:
        logger.exception("Checkout session creation failed")
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e}")
    return {"url": url, "order_id": order.order_id, "order_number": order.order_number}


@router.post("/checkout/complete", response_model=schemas.FulfillmentResponse)
def complete_checkout(
    body: schemas.SessionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    payments: StripeService = Depends(get_stripe_service),
):
    """
    Success-page confirmation. Runs the same fulfillment as the webhook, so
    whichever arrives second is a no-op.
    """
    if not body.session_id:
        raise HTTPException(status_code=400, detail="Missing session id.")
    try:
        session = payments.retrieve_checkout_session(body.session_id)
    except stripe.StripeError as e:
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e}")

    if session.get("payment_status") != "paid":
        raise HTTPException(status_code=400, detail="Payment not completed.")

    try:
        result = fulfillment.fulfill_checkout_session(db, session)
    except fulfillment.FulfillmentError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if not result.duplicate:
        queue_admin_email(background_tasks, db, result.order_id, session)
    return {"received": True, "order_id": result.order_id, "order_number": result.order_number,
            "duplicate": result.duplicate}


@router.post("/orders/by-session", response_model=schemas.OrderLookupResponse)
def get_order_by_session(body: schemas.SessionRequest, db: Session = Depends(get_db)):
    if not body.session_id:
        raise HTTPException(status_code=400, detail="Missing sessionId")
    return {"order": crud_order.get_order_by_session(db, body.session_id)}


@router.post("/cart/stock", response_model=schemas.CartStockResponse)
def get_cart_stock(body: schemas.ProductIdsRequest, db: Session = Depends(get_db)):
    """Current quantities for the products in a cart. Unknown ids are left out."""
    product_ids = checkout_service.unique_product_ids(body.product_ids)
    if not product_ids:
        return {"stock": {}}
    return {"stock": checkout_service.stock_levels(db, product_ids)}


@router.post("/cart/validate", response_model=schemas.CartValidateResponse)
def validate_cart(body: schemas.ProductIdsRequest, db: Session = Depends(get_db)):
    product_ids = checkout_service.unique_product_ids(body.product_ids)
    if not product_ids:
        return {"ok": True, "out_of_stock": []}
    sold_out = checkout_service.out_of_stock(db, product_ids)
    return {"ok": not sold_out, "out_of_stock": sold_out}
