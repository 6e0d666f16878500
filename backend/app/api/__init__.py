"""API routers for the Revenue Optimization Engine."""

from app.api.analytics import router as analytics_router
from app.api.fees import router as fees_router
from app.api.forecast import router as forecast_router
from app.api.jobs import router as jobs_router
from app.api.leakage import router as leakage_router
from app.api.opportunities import router as opportunities_router

__all__ = [
    "analytics_router",
    "fees_router",
    "forecast_router",
    "jobs_router",
    "leakage_router",
    "opportunities_router",
]
