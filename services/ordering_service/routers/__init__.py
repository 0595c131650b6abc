"""Routers package."""

from services.ordering_service.routers.branches import router as branches_router
from services.ordering_service.routers.checkout import router as checkout_router
from services.ordering_service.routers.coupons import router as coupons_router
from services.ordering_service.routers.loyalty import router as loyalty_router
from services.ordering_service.routers.payments import router as payments_router
from services.ordering_service.routers.promotions import router as promotions_router
from services.ordering_service.routers.webhooks import router as webhooks_router

__all__ = [
    "branches_router",
    "checkout_router",
    "coupons_router",
    "loyalty_router",
    "payments_router",
    "promotions_router",
    "webhooks_router",
]
