"""FastAPI application for the Store Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import add_rate_limiting
from services.store_service.routers import (
    admin_router,
    cart_router,
    internal_router,
    orders_router,
    vendor_router,
)


def create_app() -> FastAPI:
    """Create and configure the Store Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Store Service",
        version="0.1.0",
        description="Multi-vendor storefront: cart, pricing, checkout and the order lifecycle.",
    )

    add_rate_limiting(app)
    add_observability_middleware(app, service_name="store")
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "store"}

    # Buyer routes (cart, pricing preview, checkout, orders)
    app.include_router(cart_router, prefix="/store")
    app.include_router(orders_router, prefix="/store")

    # Vendor routes
    app.include_router(vendor_router, prefix="/vendor")

    # Admin routes (stats, reconciliation)
    app.include_router(admin_router, prefix="/admin/store")

    # Internal service-to-service routes (payment confirmations)
    app.include_router(internal_router, prefix="/internal/store")

    return app


app = create_app()
