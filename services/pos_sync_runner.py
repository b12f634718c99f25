# services/pos_sync_runner.py
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from sqlalchemy.orm import Session

from config import settings
from crud import product as crud_product
from inventory_service import InventoryService
from square_service import SquareAPIError, SquareService
from utils import to_cents

logger = logging.getLogger(__name__)


def run_catalog_sync(db_factory: Callable[[], Session], square: Optional[SquareService] = None) -> Dict[str, Any]:
    """
    Background task that pushes every active product to the POS catalog,
    remembers the POS object ids, and sets the POS stock count for tracked
    quantities. One failing product does not stop the run.
    """
    db: Session = db_factory()
    result: Dict[str, Any] = {"synced": 0, "skipped": 0, "failed": 0, "errors": []}
    try:
        square = square or SquareService()
        products = crud_product.get_active_products(db)
        logger.info("POS catalog sync starting for %d products", len(products))

        for p in products:
            if not p.name or p.price is None:
                result["skipped"] += 1
                continue
            try:
                ids = square.upsert_catalog_item(
                    product_id=p.id,
                    name=p.name,
                    price_cents=to_cents(p.price),
                    description=p.description,
                    sku=p.sku,
                    barcode=p.barcode,
                    item_id=p.square_item_id,
                    variation_id=p.square_variation_id,
                )
                p.square_item_id = ids["square_item_id"]
                p.square_variation_id = ids["square_variation_id"]
                db.commit()

                if p.quantity is not None and p.square_variation_id:
                    square.set_in_stock_count(p.square_variation_id, p.quantity)
                result["synced"] += 1
            except (SquareAPIError, requests.exceptions.RequestException, ValueError) as e:
                db.rollback()
                result["failed"] += 1
                result["errors"].append({"product_id": p.id, "error": str(e)})
                logger.warning("POS sync failed for product %s: %s", p.id, e)

        logger.info("POS catalog sync done: %s synced, %s skipped, %s failed",
                    result["synced"], result["skipped"], result["failed"])
        return result
    finally:
        db.close()


def apply_inventory_counts(db: Session, counts: List[Dict[str, Any]], location_id: Optional[str] = None) -> int:
    """
    Mirrors POS stock counts onto local products (matched by POS variation
    id). Only IN_STOCK counts at our location are considered. Returns the
    number of products whose quantity changed.
    """
    location_id = location_id if location_id is not None else settings.square_location_id
    inventory = InventoryService(db)
    changed = 0
    for count in counts or []:
        if (count.get("state") or "").upper() != "IN_STOCK":
            continue
        if location_id and count.get("location_id") != location_id:
            continue
        variation_id = count.get("catalog_object_id")
        if not variation_id:
            continue
        try:
            quantity = int(float(count.get("quantity")))
        except (TypeError, ValueError):
            logger.warning("Unreadable POS quantity %r for %s", count.get("quantity"), variation_id)
            continue

        product = crud_product.get_product_by_square_variation(db, variation_id)
        if product is None:
            logger.info("POS count for unknown variation %s ignored", variation_id)
            continue
        if inventory.set_from_pos(product, max(0, quantity)):
            changed += 1

    db.commit()
    return changed
