"""Read-only job inspection endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.config.dependencies import get_job_table, get_object_store
from app.pipelines.minutes import JobRecord, MinutesNotReady, assemble_minutes
from app.pipelines.minutes.interfaces import JobTableInterface, ObjectStoreInterface
from app.views import ErrorResponse, JobResponse, MinutesResponse

router = APIRouter(prefix="/jobs", tags=["jobs"])

JobTableDep = Annotated[JobTableInterface, Depends(get_job_table)]
ObjectStoreDep = Annotated[ObjectStoreInterface, Depends(get_object_store)]


async def _get_record_or_404(job_id: str, table: JobTableInterface) -> JobRecord:
    record = await table.get_job(job_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return record


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_job(job_id: str, table: JobTableDep) -> JobResponse:
    """Return the persisted job record."""

    record = await _get_record_or_404(job_id, table)
    return JobResponse.from_record(record)


@router.get(
    "/{job_id}/minutes",
    response_model=MinutesResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def get_minutes(job_id: str, table: JobTableDep, store: ObjectStoreDep) -> MinutesResponse:
    """Return transcript, sentiment and summary of a completed job."""

    record = await _get_record_or_404(job_id, table)
    try:
        bundle = await assemble_minutes(record, store)
    except MinutesNotReady as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return MinutesResponse(**bundle.model_dump())
