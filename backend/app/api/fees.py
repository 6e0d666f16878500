"""Fee schedule optimization API endpoints."""

import logging
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Query

from app.api.deps import Engine, run_response
from app.schemas.base import FeeAnalysisStatus
from app.schemas.revenue import (
    EffectivenessReportOut,
    FeeAnalysisOut,
    FeeAnalysisPage,
    FeeAnalyzeRequest,
    FeeAnalyzeResponse,
    FeeImplementRequest,
    FeeImplementResponse,
    FeeReviewRequest,
    FeeSummaryOut,
)
from app.services.revenue_engine import RevenueEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue/fees", tags=["Fees"])


@router.post(
    "/analyze",
    response_model=FeeAnalyzeResponse,
    summary="Analyze a fee schedule",
    description="Recommend fees per code from benchmarks and payer reimbursement; "
    "recommendations are stored as pending analyses.",
)
async def analyze_fees(request: FeeAnalyzeRequest, engine: Engine) -> FeeAnalyzeResponse:
    def analyze(revenue: RevenueEngine) -> FeeAnalyzeResponse:
        run = revenue.analyze_fees(
            as_of=request.as_of,
            start_date=request.start_date,
            end_date=request.end_date,
            fee_schedule_id=request.fee_schedule_id,
            codes=request.codes,
            min_utilization=request.min_utilization,
        )
        result = run.result
        return run_response(
            FeeAnalyzeResponse,
            run,
            fee_schedule_id=result.fee_schedule_id,
            fee_schedule_name=result.fee_schedule_name,
            window_months=result.window_months,
            summary=result.summary,
            recommendations=result.recommendations,
        )

    return await engine.run(analyze)


@router.get("/analyses", response_model=FeeAnalysisPage, summary="List fee analyses")
async def list_fee_analyses(
    engine: Engine,
    status: FeeAnalysisStatus | None = Query(None),
    min_impact: Decimal | None = Query(None, ge=0, description="Minimum projected annual impact"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> FeeAnalysisPage:
    def query(revenue: RevenueEngine) -> FeeAnalysisPage:
        page = revenue.ledger.list_fee_analyses(
            status=status,
            min_impact=min_impact,
            limit=limit,
            offset=offset,
        )
        return FeeAnalysisPage.model_validate(page, from_attributes=True)

    return await engine.run(query)


@router.post(
    "/analyses/{analysis_id}/review",
    response_model=FeeAnalysisOut,
    summary="Approve or reject a fee analysis",
)
async def review_fee_analysis(
    analysis_id: str,
    request: FeeReviewRequest,
    engine: Engine,
) -> FeeAnalysisOut:
    def review(revenue: RevenueEngine) -> FeeAnalysisOut:
        analysis = revenue.ledger.review_fee_analysis(
            analysis_id,
            request.decision,
            effective_date=request.effective_date,
            notes=request.notes,
        )
        return FeeAnalysisOut.model_validate(analysis)

    return await engine.run(review)


@router.post(
    "/implement",
    response_model=FeeImplementResponse,
    summary="Implement approved fee changes",
    description="Write approved recommendations into the fee schedule. "
    "Analyses that are not approved are ignored.",
)
async def implement_fee_changes(request: FeeImplementRequest, engine: Engine) -> FeeImplementResponse:
    def implement(revenue: RevenueEngine) -> FeeImplementResponse:
        result = revenue.ledger.implement_fee_changes(
            request.analysis_ids,
            request.fee_schedule_id,
            effective_date=request.effective_date,
        )
        return FeeImplementResponse.model_validate(result, from_attributes=True)

    return await engine.run(implement)


@router.get(
    "/effectiveness",
    response_model=EffectivenessReportOut,
    summary="Track implemented fee changes",
    description="Compare actual revenue after each implemented change against its projection.",
)
async def fee_effectiveness(
    engine: Engine,
    as_of: date | None = Query(None, description="Reference date (defaults to today)"),
    cpt_code: str | None = Query(None, description="Only track changes to this code"),
    date_from: date | None = Query(None, description="Earliest effective date"),
    date_to: date | None = Query(None, description="Latest effective date"),
) -> EffectivenessReportOut:
    def track(revenue: RevenueEngine) -> EffectivenessReportOut:
        report = revenue.fee_effectiveness(
            as_of=as_of,
            cpt_code=cpt_code,
            date_from=date_from,
            date_to=date_to,
        )
        return EffectivenessReportOut.model_validate(report, from_attributes=True)

    return await engine.run(track)


@router.get("/summary", response_model=FeeSummaryOut, summary="Fee optimization summary")
async def fee_summary(engine: Engine) -> FeeSummaryOut:
    return await engine.run(
        lambda revenue: FeeSummaryOut.model_validate(revenue.ledger.fee_summary(), from_attributes=True)
    )
