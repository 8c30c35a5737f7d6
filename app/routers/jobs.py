"""
Workshop Ledger - Jobs Router

API endpoints for job records. Every write goes through the versioned
record store and presents the version the caller last read.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.schemas.job import (
    JobCreateRequest,
    JobResponse,
    JobUpdateRequest,
    PaymentRequest,
    UpdateResultResponse,
)
from app.services.record_store import (
    SOURCE_JOBS_API,
    SOURCE_PAYMENTS_API,
    UpdateResult,
    VersionedRecordStore,
)


router = APIRouter()


def update_result_response(result: UpdateResult) -> UpdateResultResponse:
    return UpdateResultResponse(
        updated=result.updated,
        new_version=result.new_version,
        audit_entry_id=result.audit_entry_id,
        job=JobResponse.model_validate(result.record) if result.record is not None else None,
    )


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create job",
    description="Book in a job. Assigns the next job number for the current year.",
)
async def create_job(
    request: JobCreateRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    """Create a job at version 1."""
    job = await VersionedRecordStore(db).create_job(request, actor=actor, source=SOURCE_JOBS_API)
    return JobResponse.model_validate(job)


@router.get(
    "/by-number/{job_number}",
    response_model=JobResponse,
    summary="Get job by number",
)
async def get_job_by_number(
    job_number: str,
    db: AsyncSession = Depends(get_async_session),
):
    job = await VersionedRecordStore(db).get_job_by_number(job_number)
    return JobResponse.model_validate(job)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job",
)
async def get_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    job = await VersionedRecordStore(db).get_job(job_id)
    return JobResponse.model_validate(job)


@router.patch(
    "/{job_id}",
    response_model=UpdateResultResponse,
    summary="Update job",
    description=(
        "Apply a partial update. Fails with 409 VERSION_CONFLICT if the job "
        "changed since `expected_version` was read."
    ),
)
async def update_job(
    job_id: UUID,
    request: JobUpdateRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    result = await VersionedRecordStore(db).update_job(
        job_id,
        request.expected_version,
        request.patch,
        actor=actor,
        source=SOURCE_JOBS_API,
    )
    return update_result_response(result)


@router.delete(
    "/{job_id}",
    response_model=UpdateResultResponse,
    summary="Delete job",
    description="Soft delete. The job keeps its history and is hidden from default queries.",
)
async def delete_job(
    job_id: UUID,
    expected_version: int = Query(..., ge=1),
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    result = await VersionedRecordStore(db).delete_job(
        job_id,
        expected_version,
        actor=actor,
        source=SOURCE_JOBS_API,
    )
    return update_result_response(result)


@router.post(
    "/{job_id}/payments",
    response_model=UpdateResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
)
async def record_payment(
    job_id: UUID,
    request: PaymentRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    """Apply a payment against the balance due."""
    result = await VersionedRecordStore(db).record_payment(
        job_id,
        request.expected_version,
        request.amount,
        method=request.method,
        reference=request.reference,
        actor=actor,
        source=SOURCE_PAYMENTS_API,
    )
    return update_result_response(result)
