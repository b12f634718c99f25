# jobs/price_drop.py
"""
Scheduled price decay for catalog products.

Monthly drop: a product flagged for monthly drops loses a fixed amount for
every full calendar month since its drop started.

Barn burner: a product in the "barn-burner" category follows a daily
countdown (day 1 = $40, minus $5 a day, floor $5). On day 8 it leaves the
category and moves to the "5-under" collection.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from crud import product as crud_product
from utils import to_utc, utc_date_string

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_DROP = Decimal("10")
BARN_BURNER_CATEGORY = "barn-burner"
BARN_BURNER_FINAL_COLLECTION = "5-under"
BARN_BURNER_DAYS = 8


def months_elapsed(started_at: datetime, now: datetime) -> int:
    """
    Full calendar months between two instants (UTC). Jan 15 -> Feb 14 is 0
    months; Feb 15 is 1.
    """
    s, n = to_utc(started_at), to_utc(now)
    months = (n.year - s.year) * 12 + (n.month - s.month)
    if n.day < s.day:
        months -= 1
    return max(0, months)


def barn_burner_day_and_price(started_at: datetime, now: datetime) -> Tuple[int, Decimal]:
    days_since_start = (to_utc(now).date() - to_utc(started_at).date()).days
    day = max(1, min(BARN_BURNER_DAYS, days_since_start + 1))
    price = max(Decimal(5), Decimal(40) - 5 * (day - 1))
    return day, price


def run_monthly_price_drop(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    updated = 0
    for p in crud_product.get_monthly_drop_products(db):
        if not p.monthly_drop_started_at:
            continue
        elapsed = months_elapsed(p.monthly_drop_started_at, now)
        already_applied = int(p.monthly_drop_count or 0)
        if elapsed <= already_applied:
            continue

        amount = Decimal(str(p.monthly_drop_amount)) if p.monthly_drop_amount is not None else DEFAULT_MONTHLY_DROP
        current = Decimal(str(p.price or 0))
        new_price = max(Decimal(0), current - amount * (elapsed - already_applied))

        if p.original_price is None:
            p.original_price = current
        p.last_price_before_drop = current
        p.price = new_price
        p.monthly_drop_count = elapsed
        p.last_price_drop_at = now
        updated += 1
        logger.info("Monthly drop: %s %s -> %s (month %d)", p.id, current, new_price, elapsed)

    if updated:
        db.commit()
    return updated


def run_barn_burner_tick(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    today = utc_date_string(now)
    updated = 0
    for p in crud_product.get_barn_burner_products(db):
        if p.barn_burner_last_tick == today:
            continue  # already applied today

        started_at = p.barn_burner_started_at or p.created_at or now
        day, price = barn_burner_day_and_price(started_at, now)

        p.price = price
        p.barn_burner_day = day
        p.barn_burner_started_at = started_at
        p.barn_burner_last_tick = today
        if day >= BARN_BURNER_DAYS:
            collections = list(p.collections or [])
            if BARN_BURNER_FINAL_COLLECTION not in collections:
                collections.append(BARN_BURNER_FINAL_COLLECTION)
            p.collections = collections
            p.category = None
        updated += 1

    if updated:
        db.commit()
    logger.info("Barn burner tick: %d products updated", updated)
    return updated
