# utils.py
from __future__ import annotations

import base64
import hashlib
import hmac
import math
import random
import string
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Webhook HMAC verification (Base64-encoded SHA256 HMAC, e.g. from Square)
# ---------------------------------------------------------------------------

def verify_hmac(secret: str, data: bytes | str, hmac_header: str) -> bool:
    """
    Verifies an HMAC header (base64 encoded SHA256 digest) against a secret.

    Args:
        secret: The shared secret string.
        data:   The signed payload as bytes or str. For Square this is the
                notification URL followed by the raw request body.
        hmac_header: The header value you received (base64-encoded digest).

    Returns:
        True if valid, False otherwise.
    """
    if not secret:
        return False
    if isinstance(data, str):
        data = data.encode("utf-8")

    digest = hmac.new(secret.encode("utf-8"), data, hashlib.sha256).digest()
    computed_b64 = base64.b64encode(digest).decode("utf-8")
    # Use constant-time comparison
    return hmac.compare_digest(computed_b64, (hmac_header or "").strip())


# ---------------------------------------------------------------------------
# Money helpers (all arithmetic happens in integer cents)
# ---------------------------------------------------------------------------

def to_cents(amount: Any) -> int:
    """Dollars (Decimal, float, str) -> integer cents, rounding half up."""
    if amount is None:
        return 0
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


def non_negative_cents(raw: Any) -> int:
    """
    Parses a metadata value that should hold cents. Anything that is not a
    finite number counts as zero; negatives are clamped to zero.
    """
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, int(value))


# ---------------------------------------------------------------------------
# Order numbers & packed carts
# ---------------------------------------------------------------------------

_ORDER_ALPHABET = string.ascii_uppercase + string.digits


def make_order_number(now: Optional[datetime] = None) -> str:
    """Human-readable order number, e.g. TB-20260109-8F3K2A."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(random.choices(_ORDER_ALPHABET, k=6))
    return f"TB-{now:%Y%m%d}-{suffix}"


def clamp_quantity(raw: Any) -> int:
    """Floors a requested quantity; anything missing, non-finite or below 1 becomes 1."""
    try:
        value = math.floor(float(raw or 1))
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(1, value)


def parse_packed_cart(packed: Optional[str]) -> List[Tuple[str, int]]:
    """
    Parses the cart packed into checkout metadata: "uuid:2,uuid:1".
    Pairs without a product id are dropped.
    """
    if not packed:
        return []
    wanted = []
    for pair in packed.split(","):
        product_id, _, qty = pair.strip().partition(":")
        product_id = product_id.strip()
        if not product_id:
            continue
        wanted.append((product_id, clamp_quantity(qty)))
    return wanted


def pack_cart(items: List[Tuple[str, int]]) -> str:
    return ",".join(f"{product_id}:{qty}" for product_id, qty in items)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def to_utc(val: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if val is None:
        return None
    return val.astimezone(timezone.utc) if val.tzinfo else val.replace(tzinfo=timezone.utc)


def utc_date_string(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


__all__ = [
    "verify_hmac",
    "to_cents",
    "from_cents",
    "non_negative_cents",
    "make_order_number",
    "clamp_quantity",
    "parse_packed_cart",
    "pack_cart",
    "to_utc",
    "utc_date_string",
]
