"""Service mix, coding and contract analytics endpoints."""

import logging

from fastapi import APIRouter

from app.api.deps import Engine, run_response
from app.schemas.revenue import (
    CodingRequest,
    CodingResponse,
    ContractAnalyzeRequest,
    ContractModelRequest,
    ContractModelResponse,
    ContractResponse,
    ServiceMixRequest,
    ServiceMixResponse,
)
from app.services.revenue_engine import RevenueEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue", tags=["Analytics"])


@router.post(
    "/service-mix/analyze",
    response_model=ServiceMixResponse,
    summary="Analyze service mix",
    description="Category profitability, payer mix, provider productivity and capacity recommendations.",
)
async def analyze_service_mix(request: ServiceMixRequest, engine: Engine) -> ServiceMixResponse:
    def analyze(revenue: RevenueEngine) -> ServiceMixResponse:
        run = revenue.analyze_service_mix(
            as_of=request.as_of,
            start_date=request.start_date,
            end_date=request.end_date,
            provider_id=request.provider_id,
            min_volume=request.min_volume,
        )
        result = run.result
        return run_response(
            ServiceMixResponse,
            run,
            summary=result.summary,
            categories=result.categories,
            payers=result.payers,
            providers=result.providers,
            recommendations=result.recommendations,
        )

    return await engine.run(analyze)


@router.post(
    "/coding/analyze",
    response_model=CodingResponse,
    summary="Analyze coding patterns",
    description="E&M distribution, modifiers, bundling, documentation quality and provider compliance.",
)
async def analyze_coding(request: CodingRequest, engine: Engine) -> CodingResponse:
    def analyze(revenue: RevenueEngine) -> CodingResponse:
        run = revenue.analyze_coding(
            as_of=request.as_of,
            start_date=request.start_date,
            end_date=request.end_date,
            provider_id=request.provider_id,
            min_volume=request.min_volume,
        )
        result = run.result
        return run_response(
            CodingResponse,
            run,
            summary=result.summary,
            em_analysis=result.em_analysis,
            modifier_findings=result.modifier_findings,
            bundling_findings=result.bundling_findings,
            under_unit_findings=result.under_unit_findings,
            provider_profiles=result.provider_profiles,
            documentation_findings=result.documentation_findings,
            opportunities=result.opportunities,
        )

    return await engine.run(analyze)


@router.post(
    "/contracts/analyze",
    response_model=ContractResponse,
    summary="Score payer contracts",
)
async def analyze_contracts(request: ContractAnalyzeRequest, engine: Engine) -> ContractResponse:
    def analyze(revenue: RevenueEngine) -> ContractResponse:
        run = revenue.analyze_contracts(
            as_of=request.as_of,
            start_date=request.start_date,
            end_date=request.end_date,
            payer_id=request.payer_id,
            min_claims=request.min_claims,
        )
        return run_response(
            ContractResponse,
            run,
            summary=run.result.summary,
            scorecards=run.result.scorecards,
        )

    return await engine.run(analyze)


@router.post(
    "/contracts/model",
    response_model=ContractModelResponse,
    summary="Model a contract rate change",
    description="What-if revenue effect of proposed per-code rates. Nothing is persisted.",
)
async def model_contract(request: ContractModelRequest, engine: Engine) -> ContractModelResponse:
    def model(revenue: RevenueEngine) -> ContractModelResponse:
        result = revenue.model_contract(
            request.payer_id,
            request.proposed_rates,
            as_of=request.as_of,
            start_date=request.start_date,
            end_date=request.end_date,
        )
        return ContractModelResponse.model_validate(result, from_attributes=True)

    return await engine.run(model)
