"""FastAPI application for the Revenue Optimization Engine."""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import (
    analytics_router,
    fees_router,
    forecast_router,
    jobs_router,
    leakage_router,
    opportunities_router,
)
from app.core.config import settings
from app.core.database import close_db, init_db
from app.core.redis import close_redis, ping_redis
from app.services.benchmarks import BenchmarkTables
from app.services.errors import (
    InvalidTransitionError,
    InvalidWindowError,
    NothingToImplementError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def prewarm_all_services() -> dict[str, Any]:
    """Build the analyzer singletons before accepting requests.

    Returns:
        Dictionary with service names and their stats.
    """
    from app.services.coding_optimizer import get_coding_optimizer
    from app.services.contract_analyzer import get_contract_analyzer
    from app.services.fee_optimizer import get_fee_optimizer
    from app.services.leakage_detector import get_leakage_detector
    from app.services.revenue_forecaster import get_revenue_forecaster
    from app.services.service_mix import get_service_mix_analyzer

    start_time = time.perf_counter()
    factories = {
        "leakage_detector": get_leakage_detector,
        "fee_optimizer": get_fee_optimizer,
        "service_mix": get_service_mix_analyzer,
        "coding_optimizer": get_coding_optimizer,
        "contract_analyzer": get_contract_analyzer,
        "revenue_forecaster": get_revenue_forecaster,
    }
    services_loaded = {name: factory().get_stats() for name, factory in factories.items()}
    total_time_ms = (time.perf_counter() - start_time) * 1000

    return {
        "services_loaded": len(services_loaded),
        "total_prewarm_time_ms": round(total_time_ms, 2),
        "services": services_loaded,
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Create tables in debug mode, prewarm analyzers
    - Shutdown: Close database and Redis connections
    """
    startup_start = time.perf_counter()

    if settings.debug:
        await init_db()

    prewarm_stats = prewarm_all_services()
    logger.info(
        f"Services pre-warmed: {prewarm_stats['services_loaded']} services "
        f"in {prewarm_stats['total_prewarm_time_ms']}ms"
    )

    total_startup_ms = (time.perf_counter() - startup_start) * 1000
    logger.info(f"Server ready - total startup time: {total_startup_ms:.0f}ms")

    app.state.prewarm_stats = prewarm_stats
    app.state.startup_time_ms = total_startup_ms

    yield

    close_redis()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    description="Detects revenue leakage and recommends fee, coding, service mix and "
    "contract improvements from practice billing data.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(leakage_router)
app.include_router(fees_router)
app.include_router(analytics_router)
app.include_router(forecast_router)
app.include_router(opportunities_router)
app.include_router(jobs_router)


# ============================================================================
# Error mapping
# ============================================================================


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
@app.exception_handler(NothingToImplementError)
@app.exception_handler(InvalidWindowError)
async def bad_request_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.info(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


# ============================================================================
# Health
# ============================================================================


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check endpoint (liveness check).

    Use /ready for readiness checks.
    """
    return {
        "status": "healthy",
        "service": "revenue-optimization-engine",
        "version": VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, Any]:
    """Readiness check endpoint.

    Reports prewarmed analyzers, the benchmark table version and whether
    the job queue is reachable.
    """
    prewarm_stats = getattr(app.state, "prewarm_stats", {})
    startup_time = getattr(app.state, "startup_time_ms", 0)

    return {
        "status": "ready",
        "service": "revenue-optimization-engine",
        "version": VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "startup_time_ms": startup_time,
        "benchmarks": BenchmarkTables().get_stats(),
        "prewarmed_services": prewarm_stats.get("services_loaded", 0),
        "prewarm_time_ms": prewarm_stats.get("total_prewarm_time_ms", 0),
        "queue_available": ping_redis(),
    }


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint with API info."""
    return {
        "service": "Revenue Optimization Engine API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
    }
