"""Background revenue analysis job endpoints."""

import logging
from uuid import uuid4

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError

from app.core.queue import QUEUE_NAMES, enqueue_job, get_job_result, get_job_status
from app.core.security import RequireOrganization
from app.jobs.revenue_analysis import run_revenue_analysis
from app.schemas.revenue import RevenueJobRequest, RevenueJobResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenue/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=RevenueJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a full revenue analysis",
    description="Run every analyzer for the organization in a background worker.",
)
async def enqueue_revenue_analysis(
    request: RevenueJobRequest,
    context: RequireOrganization,
) -> RevenueJobResponse:
    job_id = str(uuid4())
    try:
        enqueue_job(
            run_revenue_analysis,
            context.organization_id,
            as_of=request.as_of.isoformat() if request.as_of else None,
            user_id=context.user_id,
            queue_name=QUEUE_NAMES["analysis"],
            job_id=job_id,
        )
    except RedisError as e:
        logger.error(f"Failed to enqueue revenue analysis: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue unavailable",
        ) from e

    logger.info(f"Queued revenue analysis job {job_id} for {context.organization_id}")
    return RevenueJobResponse(job_id=job_id, status="queued")


@router.get(
    "/{job_id}",
    response_model=RevenueJobResponse,
    summary="Get job status",
    description="Status of a queued revenue analysis, with its result once finished.",
)
async def get_revenue_job(job_id: str, context: RequireOrganization) -> RevenueJobResponse:
    try:
        job_status = get_job_status(job_id)
    except RedisError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue unavailable",
        ) from e

    if job_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job with ID {job_id} not found",
        )

    result = get_job_result(job_id) if job_status == "finished" else None
    if result is not None and result.get("organization_id") != context.organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job with ID {job_id} not found",
        )
    return RevenueJobResponse(job_id=job_id, status=job_status, result=result)
