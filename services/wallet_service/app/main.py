"""FastAPI application for the Wallet Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import add_rate_limiting
from services.wallet_service.routers import admin_router, wallet_router


def create_app() -> FastAPI:
    """Create and configure the Wallet Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Wallet Service",
        version="0.1.0",
        description="Buyer wallet ledger and order cashback.",
    )

    add_rate_limiting(app)
    add_observability_middleware(app, service_name="wallet")
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "wallet"}

    # Member-facing routes
    app.include_router(wallet_router)

    # Admin routes
    app.include_router(admin_router)

    return app


app = create_app()
