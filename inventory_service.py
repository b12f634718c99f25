# inventory_service.py

import logging
from typing import Optional

from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Stock changes for catalog products. Every change is paired with an
    append-only InventoryEvent row. Nothing here commits; the caller owns the
    transaction so an order update and its stock movements land together.
    """
    def __init__(self, db_session: Session):
        self.db = db_session

    def _adjust(self, product: models.Product, delta: int, reason: str, source: str,
                order_id: Optional[str] = None, is_absolute_set: bool = False) -> int:
        """
        Applies the change and logs the movement. Products with no tracked
        quantity (NULL) keep NULL; the movement is still recorded.
        Returns the logged delta.
        """
        current = product.quantity
        if is_absolute_set:
            actual_change = delta - (current or 0)
            product.quantity = delta
        else:
            actual_change = delta
            if current is not None:
                product.quantity = current + delta

        if actual_change == 0:
            return 0

        self.db.add(models.InventoryEvent(
            product_id=product.id,
            delta=actual_change,
            reason=reason,
            source=source,
            order_id=order_id,
        ))
        logger.debug("Stock %s %+d (%s) -> %s", product.id, actual_change, reason, product.quantity)
        return actual_change

    def record_sale(self, product: models.Product, quantity: int, order_id: str, source: str = "stripe_web") -> int:
        return self._adjust(product, -quantity, models.InventoryReason.SALE.value, source, order_id)

    def restock_refund(self, product: models.Product, quantity: int, order_id: str, source: str = "stripe_refund") -> int:
        return self._adjust(product, quantity, models.InventoryReason.REFUND.value, source, order_id)

    def set_from_pos(self, product: models.Product, quantity: int, source: str = "square") -> int:
        return self._adjust(product, quantity, models.InventoryReason.POS_SYNC.value, source, is_absolute_set=True)
