"""FastAPI application for the Ordering Service."""

from fastapi import FastAPI
from libs.common.logging import configure_logging
from services.ordering_service.routers import (
    branches_router,
    checkout_router,
    coupons_router,
    loyalty_router,
    payments_router,
    promotions_router,
    webhooks_router,
)


def create_app() -> FastAPI:
    """Create and configure the Ordering Service FastAPI app."""
    configure_logging(service="ordering")

    app = FastAPI(
        title="Restaurant Ordering Service",
        version="0.1.0",
        description="Pricing, eligibility, loyalty and payment state for online orders.",
    )

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "ordering"}

    app.include_router(branches_router)
    app.include_router(promotions_router)
    app.include_router(coupons_router)
    app.include_router(checkout_router)
    app.include_router(loyalty_router)
    app.include_router(payments_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
