"""Store Service models package."""

from services.store_service.models.catalog import Address, Product, Store
from services.store_service.models.commerce import (
    CartItem,
    Coupon,
    Order,
    OrderItem,
    StoreAuditLog,
)
from services.store_service.models.enums import (
    AuditEntityType,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "Address",
    "AuditEntityType",
    "CartItem",
    "Coupon",
    "DiscountType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "Store",
    "StoreAuditLog",
]
