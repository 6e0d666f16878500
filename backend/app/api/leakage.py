"""Revenue leakage API endpoints."""

import logging
from typing import Literal

from fastapi import APIRouter, Query

from app.api.deps import Engine, run_response
from app.schemas.base import LeakageStatus, LeakageType, Priority
from app.schemas.revenue import (
    LeakageDetectRequest,
    LeakageDetectResponse,
    LeakageLedgerSummaryOut,
    LeakageOut,
    LeakagePage,
    LeakageTransitionRequest,
)
from app.services.revenue_engine import RevenueEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue/leakage", tags=["Leakage"])

LeakageAction = Literal["investigate", "start_fix", "resolve", "ignore"]


@router.post(
    "/detect",
    response_model=LeakageDetectResponse,
    summary="Detect revenue leakage",
    description="Scan charges, encounters and receivables for lost revenue and persist the findings.",
)
async def detect_leakage(request: LeakageDetectRequest, engine: Engine) -> LeakageDetectResponse:
    def detect(revenue: RevenueEngine) -> LeakageDetectResponse:
        run = revenue.detect_leakage(
            as_of=request.as_of,
            start_date=request.start_date,
            end_date=request.end_date,
            categories=request.categories,
            provider_id=request.provider_id,
            payer_id=request.payer_id,
            min_amount=request.min_amount,
        )
        return run_response(
            LeakageDetectResponse,
            run,
            summary=run.result.summary,
            findings=run.result.findings,
        )

    return await engine.run(detect)


@router.get(
    "",
    response_model=LeakagePage,
    summary="List leakages",
)
async def list_leakages(
    engine: Engine,
    status: LeakageStatus | None = Query(None, description="Filter by lifecycle status"),
    leakage_type: LeakageType | None = Query(None, alias="type", description="Filter by category"),
    priority: Priority | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> LeakagePage:
    def query(revenue: RevenueEngine) -> LeakagePage:
        page = revenue.ledger.list_leakages(
            status=status,
            leakage_type=leakage_type,
            priority=priority,
            limit=limit,
            offset=offset,
        )
        return LeakagePage.model_validate(page, from_attributes=True)

    return await engine.run(query)


@router.get(
    "/summary",
    response_model=LeakageLedgerSummaryOut,
    summary="Open leakage summary",
    description="Totals over open leakages and resolutions in the last 30 days.",
)
async def leakage_summary(engine: Engine) -> LeakageLedgerSummaryOut:
    return await engine.run(
        lambda revenue: LeakageLedgerSummaryOut.model_validate(
            revenue.ledger.leakage_summary(), from_attributes=True
        )
    )


@router.post(
    "/{leakage_id}/{action}",
    response_model=LeakageOut,
    summary="Move a leakage through its lifecycle",
)
async def transition_leakage(
    leakage_id: str,
    action: LeakageAction,
    engine: Engine,
    request: LeakageTransitionRequest | None = None,
) -> LeakageOut:
    """Apply investigate, start_fix, resolve or ignore.

    Resolving with a captured amount also records a completed action.
    """
    request = request or LeakageTransitionRequest()

    def transition(revenue: RevenueEngine) -> LeakageOut:
        leakage = revenue.ledger.transition_leakage(
            leakage_id,
            action,
            resolution=request.resolution,
            captured_amount=request.captured_amount,
        )
        return LeakageOut.model_validate(leakage)

    return await engine.run(transition)
