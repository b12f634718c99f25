# email_service.py
import base64
import logging
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import settings

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


class EmailConfigError(RuntimeError):
    """A required Brevo setting is missing."""


def money(amount: Optional[Any], currency: Optional[str] = "CAD") -> str:
    if amount is None:
        return "-"
    code = (currency or "CAD").upper()
    return f"${Decimal(str(amount)):,.2f} {code}"


def build_admin_order_email(order: Dict[str, Any]) -> Dict[str, str]:
    """Subject + HTML body for the "new order" notification."""
    currency = order.get("currency") or "CAD"
    items: List[Dict[str, Any]] = []
    for it in order.get("items") or []:
        cents = it.get("unit_price_cents")
        items.append({
            "name": it.get("name"),
            "quantity": it.get("quantity") or 1,
            "unit_price": money(Decimal(cents) / 100, currency) if cents is not None else None,
        })

    total = money(order.get("total"), currency)
    number = order.get("order_number")
    subject = f"New order{f' #{number}' if number else ''} - {total}"
    html = _env.get_template("admin_order_email.html").render(
        order_number=number,
        total=total,
        stripe_session_id=order.get("stripe_session_id"),
        customer_name=order.get("customer_name"),
        customer_email=order.get("customer_email") or order.get("stripe_email"),
        customer_phone=order.get("customer_phone"),
        shipping_address=order.get("shipping_address"),
        items=items,
    )
    return {"subject": subject, "html": html}


def _require_brevo() -> None:
    if not settings.brevo_api_key:
        raise EmailConfigError("Missing BREVO_API_KEY")
    if not settings.services_owner_email:
        raise EmailConfigError("Missing SERVICES_OWNER_EMAIL")
    if not settings.brevo_from_email:
        raise EmailConfigError("Missing BREVO_FROM_EMAIL")


def _post_to_brevo(to: str, subject: str, html: str, text: Optional[str] = None,
                   reply_to: Optional[str] = None, attachments: Optional[List[Dict[str, str]]] = None) -> None:
    payload: Dict[str, Any] = {
        "sender": {"email": settings.brevo_from_email, "name": settings.brevo_from_name},
        "to": [{"email": to}],
        "subject": subject,
        "htmlContent": html,
    }
    if text:
        payload["textContent"] = text
    if reply_to:
        payload["replyTo"] = {"email": reply_to}
    if attachments:
        payload["attachment"] = attachments
    response = requests.post(
        settings.brevo_api_url,
        headers={"api-key": settings.brevo_api_key, "Content-Type": "application/json", "Accept": "application/json"},
        json=payload,
        timeout=15,
    )
    response.raise_for_status()


def send_admin_order_email(order: Dict[str, Any]) -> None:
    """
    Sends the store owner a notification through Brevo's transactional API.
    Raises EmailConfigError when the sender/recipient/key are not configured
    and requests.HTTPError when Brevo rejects the message.
    """
    _require_brevo()
    message = build_admin_order_email(order)
    _post_to_brevo(settings.services_owner_email, message["subject"], message["html"])
    logger.info("Admin order email sent for %s", order.get("order_number"))


def notify_admin_of_order(order: Dict[str, Any]) -> None:
    """Background-task entry point; email problems never reach the caller."""
    try:
        send_admin_order_email(order)
    except (EmailConfigError, requests.exceptions.RequestException):
        logger.exception("Admin email failed for order %s", order.get("order_number"))


# ---------------- service requests ----------------

SERVICE_TITLES = {
    "moving": "Moving",
    "junk_removal": "Junk Removal",
    "furniture_assembly": "Furniture Assembly",
    "marketplace_pickup_delivery": "Marketplace Pickup / Delivery",
    "donation_pickup": "Donation Pickup",
}
HONEYPOT_FIELD = "website"
PHOTOS_FIELD = "photos"
MAX_SERVICE_PHOTOS = 10
MAX_PHOTO_BYTES = 10 * 1024 * 1024


def service_title(service_id: str) -> str:
    return SERVICE_TITLES.get(service_id, "Service Request")


def _pretty_key(key: str) -> str:
    key = re.sub(r"\[\]$", "", key).replace("_", " ")
    return re.sub(r"\s+", " ", key).strip()


def collect_service_details(fields: Iterable[Tuple[str, str]]) -> Dict[str, Union[str, List[str]]]:
    """
    Text form fields for the request email. Empty values, the honeypot and
    the photo field are dropped; repeated keys become lists.
    """
    details: Dict[str, Union[str, List[str]]] = {}
    for key, value in fields:
        if key in (HONEYPOT_FIELD, PHOTOS_FIELD):
            continue
        value = str(value).strip()
        if not value:
            continue
        existing = details.get(key)
        if existing is None:
            details[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            details[key] = [existing, value]
    return details


def detail_rows(details: Dict[str, Union[str, List[str]]]) -> List[Tuple[str, str]]:
    """(label, value) pairs sorted by field name."""
    rows = []
    for key in sorted(details, key=str.lower):
        value = details[key]
        rows.append((_pretty_key(key), ", ".join(value) if isinstance(value, list) else value))
    return rows


def select_photos(photos: Iterable[Tuple[str, bytes]]) -> List[Tuple[str, bytes]]:
    """First MAX_SERVICE_PHOTOS uploads; oversized files are skipped, not fatal."""
    kept = []
    for filename, content in list(photos)[:MAX_SERVICE_PHOTOS]:
        if len(content) > MAX_PHOTO_BYTES:
            logger.info("Skipping oversized photo %s (%d bytes)", filename, len(content))
            continue
        kept.append((filename or "photo.jpg", content))
    return kept


def build_service_request_emails(service_id: str, contact: Dict[str, str],
                                 details: Dict[str, Union[str, List[str]]], photo_count: int) -> Dict[str, Dict[str, str]]:
    """Owner notification and customer confirmation for one service request."""
    title = service_title(service_id)
    rows = detail_rows(details)
    plain = "\n".join(f"{label}: {value}" for label, value in rows)
    owner = {
        "subject": f"[TBF Services] {title} - {contact['name']}",
        "text": f"New service request: {title}\n\n{plain}\n\nPhotos attached: {photo_count}",
        "html": _env.get_template("service_request_owner.html").render(
            title=title, contact=contact, rows=rows, photo_count=photo_count),
    }
    customer = {
        "subject": f"We received your request - {title}",
        "text": (f"Hi {contact['name']},\n\nThanks for the details! A member of the Barn will reach out "
                 f"soon for booking.\n\nHere's what we received:\n\n{plain}\n\n- {settings.brevo_from_name}"),
        "html": _env.get_template("service_request_customer.html").render(
            title=title, contact=contact, rows=rows, signature=settings.brevo_from_name),
    }
    return {"owner": owner, "customer": customer}


def send_service_request(service_id: str, contact: Dict[str, str],
                         details: Dict[str, Union[str, List[str]]],
                         photos: Iterable[Tuple[str, bytes]] = ()) -> int:
    """
    Emails the owner (with photos attached, reply-to the customer) and sends
    the customer a confirmation. Returns the number of attached photos.
    """
    _require_brevo()
    kept = select_photos(photos)
    messages = build_service_request_emails(service_id, contact, details, len(kept))
    attachments = [
        {"name": filename, "content": base64.b64encode(content).decode("ascii")}
        for filename, content in kept
    ]

    owner = messages["owner"]
    _post_to_brevo(settings.services_owner_email, owner["subject"], owner["html"], owner["text"],
                   reply_to=contact["email"], attachments=attachments)
    customer = messages["customer"]
    _post_to_brevo(contact["email"], customer["subject"], customer["html"], customer["text"])
    logger.info("Service request %s sent for %s", service_id, contact["email"])
    return len(kept)
