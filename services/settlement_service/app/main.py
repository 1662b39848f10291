"""FastAPI application for the Settlement Service."""

from fastapi import FastAPI
from libs.common.error_handler import add_exception_handlers
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import add_rate_limiting
from services.settlement_service.routers import admin_router, vendor_router


def create_app() -> FastAPI:
    """Create and configure the Settlement Service FastAPI app."""
    app = FastAPI(
        title="Marketplace Settlement Service",
        version="0.1.0",
        description="Vendor settlements, earnings and payout status.",
    )

    add_rate_limiting(app)
    add_observability_middleware(app, service_name="settlement")
    add_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "settlement"}

    app.include_router(vendor_router)
    app.include_router(admin_router)

    return app


app = create_app()
