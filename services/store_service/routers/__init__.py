"""Store service routers package."""

from services.store_service.routers.admin import router as admin_router
from services.store_service.routers.cart import router as cart_router
from services.store_service.routers.internal import router as internal_router
from services.store_service.routers.orders import router as orders_router
from services.store_service.routers.vendor import router as vendor_router

__all__ = [
    "admin_router",
    "cart_router",
    "internal_router",
    "orders_router",
    "vendor_router",
]
