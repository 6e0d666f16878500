"""Revenue opportunity endpoints (service mix, coding and contract findings)."""

import logging
from typing import Literal

from fastapi import APIRouter, Query

from app.api.deps import Engine
from app.schemas.base import OpportunityStatus, OpportunityType
from app.schemas.revenue import OpportunityOut, OpportunityPage, OpportunityTransitionRequest
from app.services.revenue_engine import RevenueEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue/opportunities", tags=["Opportunities"])

OpportunityAction = Literal["start", "complete", "decline"]


@router.get("", response_model=OpportunityPage, summary="List opportunities")
async def list_opportunities(
    engine: Engine,
    opportunity_type: OpportunityType | None = Query(None, alias="type"),
    status: OpportunityStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> OpportunityPage:
    def query(revenue: RevenueEngine) -> OpportunityPage:
        page = revenue.ledger.list_opportunities(
            opportunity_type=opportunity_type,
            status=status,
            limit=limit,
            offset=offset,
        )
        return OpportunityPage.model_validate(page, from_attributes=True)

    return await engine.run(query)


@router.post(
    "/{opportunity_id}/{action}",
    response_model=OpportunityOut,
    summary="Move an opportunity through its lifecycle",
)
async def transition_opportunity(
    opportunity_id: str,
    action: OpportunityAction,
    engine: Engine,
    request: OpportunityTransitionRequest | None = None,
) -> OpportunityOut:
    request = request or OpportunityTransitionRequest()

    def transition(revenue: RevenueEngine) -> OpportunityOut:
        opportunity = revenue.ledger.transition_opportunity(
            opportunity_id,
            action,
            captured_value=request.captured_value,
            notes=request.notes,
        )
        return OpportunityOut.model_validate(opportunity)

    return await engine.run(transition)
