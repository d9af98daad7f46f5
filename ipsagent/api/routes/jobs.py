"""Job submission, status and worker trigger routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ipsagent.api.dependencies import get_dispatcher, get_user_id
from ipsagent.core.exceptions import ClaimConflict
from ipsagent.core.logging import get_logger
from ipsagent.jobs.dispatch import JobDispatcher
from ipsagent.jobs.models import JobKind, JobStatus
from ipsagent.schemas.jobs import (
    CancelResponse,
    JobResponse,
    JobSubmitRequest,
    JobSubmitResponse,
    ProcessRequest,
    TriggerResponse,
)


logger = get_logger("routes.jobs")

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a job",
    description="Validate and queue an agent analysis or dashboard refresh job.",
)
async def submit_job(
    payload: JobSubmitRequest,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    user_id: Optional[str] = Depends(get_user_id),
) -> JobSubmitResponse:
    job_id = await dispatcher.submit(payload.kind, payload.to_params(), user_id=user_id)
    return JobSubmitResponse(job_id=job_id, status=JobStatus.PENDING.value)


@router.get(
    "",
    response_model=list[JobResponse],
    summary="List jobs",
)
async def list_jobs(
    kind: Optional[JobKind] = Query(default=None),
    job_status: Optional[JobStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
    user_id: Optional[str] = Depends(get_user_id),
) -> list[JobResponse]:
    jobs = await dispatcher.list_jobs(kind=kind, status=job_status, user_id=user_id, limit=limit)
    return [JobResponse.from_job(job) for job in jobs]


@router.post(
    "/worker/process",
    response_model=TriggerResponse,
    summary="Run a job now",
    description="Run the given pending job, or the oldest pending job when no id is given.",
)
async def process_job(
    payload: Optional[ProcessRequest] = Body(default=None),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> TriggerResponse:
    payload = payload or ProcessRequest()
    if payload.job_id:
        await dispatcher.status(payload.job_id)
        if not await dispatcher.process_job(payload.job_id):
            raise ClaimConflict(
                f"Job {payload.job_id} is not pending",
                details={"job_id": payload.job_id},
            )
        return TriggerResponse(job_id=payload.job_id, message="Job processed")

    job_id = await dispatcher.process_next_pending()
    if job_id is None:
        return TriggerResponse(message="No pending jobs")
    return TriggerResponse(job_id=job_id, message="Job processed")


@router.post(
    "/recover",
    response_model=TriggerResponse,
    summary="Recover a stuck job",
    description="Run the oldest job that has been pending past the stuck window.",
)
async def recover_stuck(
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> TriggerResponse:
    job_id = await dispatcher.recover_stuck()
    if job_id is None:
        return TriggerResponse(message="No stuck jobs")
    return TriggerResponse(job_id=job_id, message="Recovered stuck job")


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job status",
)
async def get_job(
    job_id: str = Path(..., min_length=1, max_length=64),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> JobResponse:
    return JobResponse.from_job(await dispatcher.status(job_id))


@router.post(
    "/{job_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel a job",
    description="Cancel a pending or running job. Running jobs stop before their next step.",
)
async def cancel_job(
    job_id: str = Path(..., min_length=1, max_length=64),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> CancelResponse:
    cancelled = await dispatcher.cancel(job_id)
    return CancelResponse(job_id=job_id, cancelled=cancelled)
