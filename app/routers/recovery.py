"""
Workshop Ledger - Recovery Router

Point-in-time restore (preview, then commit) and manual rebuild.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.schemas.recovery import (
    RebuildRequest,
    RecoveryResultResponse,
    RestoreCommitRequest,
    RestorePreviewRequest,
    RestorePreviewResponse,
)
from app.services.record_store import UpdateResult
from app.services.restore_service import RestoreService


router = APIRouter()


def _recovery_response(result: UpdateResult) -> RecoveryResultResponse:
    return RecoveryResultResponse(
        job_id=result.record.id,
        job_number=result.record.job_number,
        new_version=result.new_version,
        audit_entry_id=result.audit_entry_id,
    )


@router.post(
    "/restore/preview",
    response_model=RestorePreviewResponse,
    summary="Preview restore",
    description="Show the job now and as it was at the given time. Writes nothing.",
)
async def preview_restore(
    request: RestorePreviewRequest,
    db: AsyncSession = Depends(get_async_session),
):
    preview = await RestoreService(db).preview(request.job_number, request.timestamp)
    return RestorePreviewResponse(
        job_id=preview.job_id,
        job_number=preview.job_number,
        current_version=preview.current_version,
        audit_entry_id=preview.audit_entry_id,
        audit_entry_changed_at=preview.audit_entry_changed_at,
        current=preview.current,
        restored_candidate=preview.restored_candidate,
        differing_fields=preview.differing_fields,
    )


@router.post(
    "/restore/commit",
    response_model=RecoveryResultResponse,
    summary="Commit restore",
)
async def commit_restore(
    request: RestoreCommitRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    result = await RestoreService(db).commit(
        request.job_id,
        request.reason,
        restored_values=request.restored_values,
        timestamp=request.timestamp,
        expected_version=request.expected_version,
        actor=actor,
    )
    return _recovery_response(result)


@router.post(
    "/rebuild",
    response_model=RecoveryResultResponse,
    summary="Rebuild job",
    description="Re-enter lost line items when no usable history exists.",
)
async def rebuild_job(
    request: RebuildRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    result = await RestoreService(db).rebuild(
        request.job_number,
        request.reason,
        request.line_items,
        labour_hours=request.labour_hours,
        labour_rate=request.labour_rate,
        discount_type=request.discount_type,
        discount_value=request.discount_value,
        service_deposit=request.service_deposit,
        expected_version=request.expected_version,
        actor=actor,
    )
    return _recovery_response(result)
