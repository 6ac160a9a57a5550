"""API routers."""

from agenda.routers.internal import router as internal_router
from agenda.routers.notifications import router as notifications_router
from agenda.routers.punctuality import router as punctuality_router

__all__ = [
    "internal_router",
    "notifications_router",
    "punctuality_router",
]
