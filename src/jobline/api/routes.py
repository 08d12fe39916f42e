"""Job endpoints: submit, cancel, status."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, status

from jobline.api.errors import BadRequestError, UnknownJobKindError
from jobline.api.schemas import (
    CancelRequest,
    CancelResponse,
    MessageJobInput,
    StatusResponse,
    SubmitResponse,
    ToolJobInput,
)
from jobline.orchestrator.models import JobKind
from jobline.orchestrator.services import JobService

router = APIRouter(prefix="/jobs", tags=["jobs"])

_INPUT_MODELS = {
    JobKind.MESSAGE: MessageJobInput,
    JobKind.TOOL: ToolJobInput,
}


def get_service(request: Request) -> JobService:
    return request.app.state.service


# Registered before ``/{kind}`` so "cancel" is never read as a job kind.
@router.post("/cancel", response_model=CancelResponse)
def cancel_job(
    payload: CancelRequest,
    service: JobService = Depends(get_service),
) -> CancelResponse:
    result = service.cancel(payload.id)
    message = "Job cancelled" if result.applied else "Job already finished; nothing to cancel"
    return CancelResponse(id=result.job_id, status="cancelled", message=message)


@router.get("/status", response_model=StatusResponse)
def job_status(
    id: str | None = None,  # noqa: A002
    service: JobService = Depends(get_service),
) -> StatusResponse:
    if not id:
        raise BadRequestError("Missing required query parameter: id")
    job = service.status(id)
    return StatusResponse(id=job.job_id, status=job.status.value, output=job.output)


@router.post("/{kind}", status_code=status.HTTP_202_ACCEPTED, response_model=SubmitResponse)
def submit_job(
    kind: str,
    payload: dict[str, Any] = Body(...),
    service: JobService = Depends(get_service),
) -> SubmitResponse:
    try:
        job_kind = JobKind(kind)
    except ValueError as error:
        raise UnknownJobKindError(kind) from error
    validated = _INPUT_MODELS[job_kind].model_validate(payload)
    job = service.submit(job_kind, validated.model_dump(exclude_none=True))
    return SubmitResponse(id=job.job_id, status=job.status.value)
