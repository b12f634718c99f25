# models.py

import enum
import uuid

from sqlalchemy import (Column, Integer, String, DateTime, Text, JSON,
                        ForeignKey, BIGINT, NUMERIC, BOOLEAN, Index)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
from database import Base

# JSONB on Postgres, plain JSON everywhere else (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FULFILLED = "fulfilled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class InventoryReason(str, enum.Enum):
    SALE = "sale"
    REFUND = "refund"
    POS_SYNC = "pos_sync"


class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String(36), primary_key=True)
    email = Column(String(255), index=True, nullable=True)
    full_name = Column(String(255))
    is_admin = Column(BOOLEAN, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Product(Base):
    __tablename__ = "products"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    sku = Column(String(255), index=True)
    barcode = Column(String(255), index=True)
    price = Column(NUMERIC(10, 2), nullable=False, default=0)
    # NULL means stock is not tracked for this product
    quantity = Column(Integer, nullable=True)
    is_active = Column(BOOLEAN, default=True, nullable=False)
    image_url = Column(String(2048))
    category = Column(String(255), index=True)
    collections = Column(JSONType, default=list)

    square_item_id = Column(String(255))
    square_variation_id = Column(String(255), unique=True)
    square_image_id = Column(String(255))

    # monthly price drop
    is_monthly_price_drop = Column(BOOLEAN, default=False, nullable=False)
    monthly_drop_started_at = Column(DateTime(timezone=True))
    monthly_drop_amount = Column(NUMERIC(10, 2))
    monthly_drop_count = Column(Integer, default=0, nullable=False)
    original_price = Column(NUMERIC(10, 2))
    last_price_before_drop = Column(NUMERIC(10, 2))
    last_price_drop_at = Column(DateTime(timezone=True))

    # barn burner daily countdown
    barn_burner_started_at = Column(DateTime(timezone=True))
    barn_burner_day = Column(Integer)
    barn_burner_last_tick = Column(String(10))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    inventory_events = relationship("InventoryEvent", back_populates="product")


class Order(Base):
    __tablename__ = "orders"
    order_id = Column(String(36), primary_key=True, default=_uuid)
    order_number = Column(String(32), unique=True, index=True, nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    channel = Column(String(50), default="web")

    items = Column(JSONType, nullable=False, default=list)
    subtotal = Column(NUMERIC(10, 2), default=0)
    tax = Column(NUMERIC(10, 2), default=0)
    shipping_cost = Column(NUMERIC(10, 2), default=0)
    promo_code = Column(String(64))
    promo_discount = Column(NUMERIC(10, 2), default=0)
    total = Column(NUMERIC(10, 2), default=0)
    amount_total_cents = Column(BIGINT)
    currency = Column(String(10), default="cad")

    stripe_session_id = Column(String(255), unique=True, index=True)
    payment_method = Column(String(50))
    payment_id = Column(String(255), index=True)
    stripe_refund_id = Column(String(255))

    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=True)
    customer_name = Column(String(255))
    customer_email = Column(String(255))
    customer_phone = Column(String(64))
    stripe_email = Column(String(255))
    shipping_address = Column(Text)

    purchase_date = Column(DateTime(timezone=True))
    fulfilled_at = Column(DateTime(timezone=True))
    refunded_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    inventory_events = relationship("InventoryEvent", back_populates="order")


class InventoryEvent(Base):
    """Append-only stock audit row."""
    __tablename__ = "inventory_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String(32), nullable=False)
    source = Column(String(64))
    order_id = Column(String(36), ForeignKey("orders.order_id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", back_populates="inventory_events")
    order = relationship("Order", back_populates="inventory_events")

    __table_args__ = (
        Index("ix_inventory_events_order_reason", "order_id", "reason"),
    )
