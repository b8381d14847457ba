"""API routers."""
from .alerts import router as alerts_router
from .cron import router as cron_router

__all__ = ["alerts_router", "cron_router"]
