"""Pydantic schemas for store service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.store_service.models import OrderStatus, PaymentMethod, PaymentStatus

# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartLineIn(BaseModel):
    """A line sent by the client. Any price it carries is ignored."""

    product_id: uuid.UUID
    quantity: int = Field(..., ge=1)


class CartItemCreate(CartLineIn):
    pass


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    product_name: Optional[str] = None
    unit_price: Optional[Decimal] = None
    created_at: datetime


class CartResponse(BaseModel):
    items: list[CartItemResponse] = []
    item_count: int = 0


# ============================================================================
# PRICING SCHEMAS
# ============================================================================


class PricingPreviewRequest(BaseModel):
    # Omitted lines mean the caller's stored cart
    lines: Optional[list[CartLineIn]] = None
    coupon_code: Optional[str] = Field(None, max_length=50)


class PricedLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: uuid.UUID
    store_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class PricingPreviewResponse(BaseModel):
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    coupon_code: Optional[str] = None
    lines: list[PricedLineResponse] = []


# ============================================================================
# CHECKOUT / ORDER SCHEMAS
# ============================================================================


class CheckoutRequest(BaseModel):
    shipping_address_id: uuid.UUID
    billing_address_id: Optional[uuid.UUID] = None
    payment_method: PaymentMethod = PaymentMethod.COD
    coupon_code: Optional[str] = Field(None, max_length=50)
    lines: Optional[list[CartLineIn]] = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    line_no: int
    product_id: uuid.UUID
    store_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    user_id: str
    status: OrderStatus

    subtotal_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None

    shipping_address: dict
    billing_address: dict

    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None

    cashback_given: bool
    cancellation_reason: Optional[str] = None

    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemResponse] = []


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentConfirmation(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=100)


class OrderStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    revenue: Decimal
    pending_orders: int
    delivered_orders: int
    cancelled_orders: int
    returned_orders: int
    cashback_paid: Decimal
    by_status: dict[str, int]


class ReconcileResponse(BaseModel):
    reconciled: int
