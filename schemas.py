# schemas.py
from __future__ import annotations

from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, ConfigDict, field_validator

# =========================
# Base model configurations
# =========================

class ORMBase(BaseModel):
    """Base for models mapped to SQLAlchemy objects."""
    model_config = ConfigDict(from_attributes=True)

# ======================================================
# Orders
# ======================================================

class OrderItem(BaseModel):
    """Stock snapshot of one purchased line, frozen at purchase time."""
    product_id: str
    quantity: int
    unit_price_cents: int
    name: str

class Order(ORMBase):
    order_id: str
    order_number: str
    status: str
    currency: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None
    promo_code: Optional[str] = None
    promo_discount: Optional[Decimal] = None
    total: Optional[Decimal] = None
    amount_total_cents: Optional[int] = None
    purchase_date: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    stripe_email: Optional[str] = None
    stripe_session_id: Optional[str] = None

class AdminOrder(Order):
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    stripe_refund_id: Optional[str] = None
    channel: Optional[str] = None
    fulfilled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

class OrderLookupResponse(BaseModel):
    order: Optional[Order] = None

class SessionRequest(BaseModel):
    session_id: str = Field("", alias="sessionId")
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("session_id", mode="before")
    @classmethod
    def _strip(cls, v):
        return str(v or "").strip()

# --- Checkout ---

class CartItemIn(BaseModel):
    product_id: str = Field(..., alias="productId")
    quantity: Any = 1
    model_config = ConfigDict(populate_by_name=True)

class CheckoutRequest(BaseModel):
    items: List[CartItemIn]
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    # Quoted by the shipping step before checkout starts.
    shipping_cost_cents: int = Field(0, ge=0)

class CheckoutResponse(BaseModel):
    url: str
    order_id: str
    order_number: str

class FulfillmentResponse(BaseModel):
    received: bool = True
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    duplicate: bool = False

class RefundResponse(BaseModel):
    ok: bool = True
    refund_id: str

# --- Jobs ---

class JobResult(BaseModel):
    ok: bool = True
    updated: int = 0


# --- Cart ---

class ProductIdsRequest(BaseModel):
    product_ids: List[Any] = Field(default_factory=list, alias="productIds")
    model_config = ConfigDict(populate_by_name=True)

class CartStockResponse(BaseModel):
    # None: quantity is not tracked, no cap on the client
    stock: Dict[str, Optional[int]] = Field(default_factory=dict)

class OutOfStockItem(BaseModel):
    id: str
    name: str

class CartValidateResponse(BaseModel):
    ok: bool = True
    out_of_stock: List[OutOfStockItem] = Field(default_factory=list)

# --- Service requests ---

class ServiceRequestResponse(BaseModel):
    ok: bool = True
    message: str
