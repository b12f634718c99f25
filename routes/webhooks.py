# routes/webhooks.py
import json
import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, Header, BackgroundTasks
from sqlalchemy.orm import Session

import email_service
import stripe_service
from config import settings
from crud import order as crud_order
from database import get_db
from services import fulfillment, pos_sync_runner
from utils import verify_hmac

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

FULFILL_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
PAID_STATUSES = {"paid", "no_payment_required"}


def queue_admin_email(background_tasks: BackgroundTasks, db: Session, order_id: str, session: Dict[str, Any]):
    order = crud_order.get_order(db, order_id)
    if order is None:
        return
    summary = crud_order.order_summary(order)
    details = session.get("customer_details") or {}
    summary["customer_name"] = summary.get("customer_name") or details.get("name")
    summary["customer_phone"] = summary.get("customer_phone") or details.get("phone")
    background_tasks.add_task(email_service.notify_admin_of_order, summary)


def _handle_checkout_session(db: Session, background_tasks: BackgroundTasks, session: Dict[str, Any]) -> Dict[str, Any]:
    if session.get("payment_status") not in PAID_STATUSES:
        logger.info("Session %s completed without payment (%s); waiting", session.get("id"), session.get("payment_status"))
        return {"received": True, "fulfilled": False}
    try:
        result = fulfillment.fulfill_checkout_session(db, session)
    except fulfillment.FulfillmentError as e:
        # Redelivery cannot fix a bad cart or an oversell; acknowledge and log.
        logger.error("Webhook fulfillment rejected for session %s: %s", session.get("id"), e)
        return {"received": True, "fulfilled": False}

    if not result.duplicate:
        queue_admin_email(background_tasks, db, result.order_id, session)
    return {"received": True, "fulfilled": True, "order_id": result.order_id, "duplicate": result.duplicate}


def _handle_charge_refunded(db: Session, charge: Dict[str, Any]) -> Dict[str, Any]:
    if not charge.get("refunded"):
        logger.info("Partial refund on charge %s ignored", charge.get("id"))
        return {"received": True}
    refunds = (charge.get("refunds") or {}).get("data") or []
    refund_id = refunds[0].get("id") if refunds else None
    order = fulfillment.refund_by_payment_intent(db, charge.get("payment_intent") or "", refund_id)
    return {"received": True, "order_id": order.order_id if order else None}


@router.post("/stripe")
async def receive_stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """
    Authenticates the payment provider's event and dispatches on its type.
    Unexpected failures propagate as 500 so the provider redelivers.
    """
    secret = settings.stripe_webhook_secret
    if not secret:
        raise HTTPException(status_code=500, detail="Missing STRIPE_WEBHOOK_SECRET")
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing stripe-signature")

    raw_body = await request.body()
    try:
        event = stripe_service.construct_event(raw_body, stripe_signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}")

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("Stripe event %s (%s)", event.get("id"), event_type)

    if event_type in FULFILL_EVENTS:
        return _handle_checkout_session(db, background_tasks, obj)
    if event_type == "charge.refunded":
        return _handle_charge_refunded(db, obj)
    if event_type == "charge.dispute.created":
        order = fulfillment.mark_disputed_by_payment_intent(db, obj.get("payment_intent") or "")
        return {"received": True, "order_id": order.order_id if order else None}

    logger.info("Unhandled Stripe event type: %s", event_type)
    return {"received": True}


@router.post("/square")
async def receive_square_webhook(
    request: Request,
    x_square_hmacsha256_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """
    POS notifications. Signature = base64(HMAC_SHA256(key, notification_url + body)).
    """
    raw_body = await request.body()
    if not x_square_hmacsha256_signature:
        raise HTTPException(status_code=401, detail="Missing signature header")

    key = settings.square_webhook_signature_key.strip()
    url = settings.square_webhook_notification_url.strip()
    if not key or not url:
        raise HTTPException(status_code=500, detail="Square webhook is not configured")

    if not verify_hmac(key, url.encode("utf-8") + raw_body, x_square_hmacsha256_signature):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event_type = payload.get("type")
    if event_type == "inventory.count.updated":
        counts = (((payload.get("data") or {}).get("object") or {}).get("inventory_counts")) or []
        changed = pos_sync_runner.apply_inventory_counts(db, counts)
        return {"ok": True, "verified": True, "updated": changed}

    logger.info("Unhandled Square event type: %s", event_type)
    return {"ok": True, "verified": True}
