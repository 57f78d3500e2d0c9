"""API layer module.

Contains FastAPI routers, request/response schemas and middleware.
"""

from marketplace.api.cart import router as cart_router
from marketplace.api.health import router as health_router
from marketplace.api.offers import router as offers_router
from marketplace.api.orders import router as orders_router
from marketplace.api.payments import router as payments_router

__all__ = [
    "cart_router",
    "health_router",
    "offers_router",
    "orders_router",
    "payments_router",
]
