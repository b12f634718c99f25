# stripe_service.py
import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from config import settings

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """The payment provider refused an operation."""


def _plain(obj: Any) -> Dict[str, Any]:
    # StripeObject -> plain nested dicts, so callers never depend on SDK types
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


class StripeService:
    """
    Thin wrapper over the Stripe SDK for hosted checkout, refunds and webhook
    signature checks. Every method returns plain dicts.
    """
    def __init__(self, api_key: Optional[str] = None, api_version: Optional[str] = None):
        api_key = api_key if api_key is not None else settings.stripe_secret_key
        if not api_key:
            raise ValueError("Stripe secret key is required.")
        self.api_key = api_key
        self.api_version = api_version or settings.stripe_api_version

    def _opts(self) -> Dict[str, Any]:
        return {"api_key": self.api_key, "stripe_version": self.api_version}

    # -------------------- checkout --------------------
    def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        shipping_cost_cents: int = 0,
        currency: str = "cad",
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "automatic_tax": {"enabled": settings.stripe_automatic_tax},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if shipping_cost_cents > 0:
            params["shipping_options"] = [{
                "shipping_rate_data": {
                    "type": "fixed_amount",
                    "display_name": "Delivery",
                    "fixed_amount": {"amount": int(shipping_cost_cents), "currency": currency},
                },
            }]
        session = stripe.checkout.Session.create(**params, **self._opts())
        return _plain(session)

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return _plain(stripe.checkout.Session.retrieve(session_id, **self._opts()))

    # -------------------- refunds --------------------
    def latest_charge_disputed(self, payment_intent_id: str) -> bool:
        """
        Returns True when the latest charge of the payment intent carries a
        dispute. Raises PaymentError when there is no charge at all.
        """
        intent = _plain(stripe.PaymentIntent.retrieve(payment_intent_id, **self._opts()))
        charge_id = intent.get("latest_charge")
        if not charge_id:
            raise PaymentError("No charge found for this payment.")
        charge = _plain(stripe.Charge.retrieve(str(charge_id), expand=["dispute"], **self._opts()))
        return bool(charge.get("disputed"))

    def create_refund(self, payment_intent_id: str) -> Dict[str, Any]:
        """Full refund of a payment intent."""
        try:
            refund = stripe.Refund.create(payment_intent=payment_intent_id, **self._opts())
        except stripe.StripeError as e:
            logger.warning("Refund of %s rejected: %s", payment_intent_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e
        return _plain(refund)


def construct_event(payload: bytes, sig_header: str, secret: str) -> Dict[str, Any]:
    """
    Authenticates a webhook delivery with the SDK's signature check and
    returns the event as plain JSON.
    Raises ValueError for malformed payloads and
    stripe.SignatureVerificationError for bad signatures.
    """
    stripe.Webhook.construct_event(payload, sig_header, secret)
    return json.loads(payload)


def get_stripe_service() -> StripeService:
    """FastAPI dependency; overridden in tests."""
    return StripeService()
