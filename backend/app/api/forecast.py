"""Revenue forecast and goal endpoints."""

import logging
from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Query

from app.api.deps import Engine
from app.schemas.revenue import ForecastRequest, ForecastResponse, GoalOut, GoalUpsertRequest
from app.services.revenue_engine import RevenueEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue", tags=["Forecast"])


@router.post(
    "/forecast",
    response_model=ForecastResponse,
    summary="Forecast revenue",
    description="Conservative, baseline and optimistic projections with goal variance and actions.",
)
async def forecast_revenue(request: ForecastRequest, engine: Engine) -> ForecastResponse:
    def forecast(revenue: RevenueEngine) -> ForecastResponse:
        result = revenue.forecast(
            as_of=request.as_of,
            horizon_months=request.horizon_months,
            lookback_months=request.lookback_months,
            include_seasonality=request.include_seasonality,
            include_pipeline=request.include_pipeline,
            scenarios=request.scenarios,
        )
        return ForecastResponse.model_validate({**asdict(result), "analyzed_at": revenue.now()})

    return await engine.run(forecast)


@router.get("/goals", response_model=list[GoalOut], summary="List revenue goals with live progress")
async def list_goals(
    engine: Engine,
    as_of: date | None = Query(None, description="Progress reference date (defaults to today)"),
    active_only: bool = Query(False),
) -> list[GoalOut]:
    def query(revenue: RevenueEngine) -> list[GoalOut]:
        goals = revenue.ledger.list_goals(active_only=active_only)
        progress = {p.goal_id: p for p in revenue.goal_progress(as_of=as_of, active_only=active_only)}
        return [
            GoalOut.model_validate(
                {
                    "id": goal.id,
                    "name": goal.name,
                    "period_type": goal.period_type,
                    "period_start": goal.period_start,
                    "period_end": goal.period_end,
                    "target_amount": goal.target_amount,
                    "is_active": goal.is_active,
                    "progress": progress.get(goal.id),
                },
                from_attributes=True,
            )
            for goal in goals
        ]

    return await engine.run(query)


@router.put("/goals", response_model=GoalOut, summary="Create or update a revenue goal")
async def upsert_goal(request: GoalUpsertRequest, engine: Engine) -> GoalOut:
    def save(revenue: RevenueEngine) -> GoalOut:
        goal = revenue.ledger.save_goal(
            name=request.name,
            period_type=request.period_type,
            period_start=request.period_start,
            period_end=request.period_end,
            target_amount=request.target_amount,
            is_active=request.is_active,
            goal_id=request.id,
        )
        return GoalOut.model_validate(goal)

    return await engine.run(save)
