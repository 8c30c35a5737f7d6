"""
Workshop Ledger - Audit Router

Audit history listing, CSV export, and the accept/reject review workflow.
"""

import io
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.models.audit import AuditOperation, ReviewStatus
from app.schemas.audit import (
    AuditEntryListResponse,
    AuditEntryResponse,
    ReviewRequest,
    ReviewResultResponse,
)
from app.services.audit_service import AuditService
from app.services.review_service import ReviewOutcome, ReviewService
from app.utils.error_handling import NotFoundException


router = APIRouter()

ReviewFilter = Literal["unreviewed", "accepted", "rejected", "all"]


def _filters(
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    operation: Optional[AuditOperation],
    job_number: Optional[str],
    review_status: ReviewFilter,
    table_name: Optional[str],
) -> dict:
    return {
        "date_from": date_from,
        "date_to": date_to,
        "operation": operation,
        "job_number": job_number,
        "review_status": None if review_status == "all" else ReviewStatus(review_status),
        "table_name": table_name,
    }


def _outcome_response(outcome: ReviewOutcome) -> ReviewResultResponse:
    return ReviewResultResponse(
        entry=AuditEntryResponse.model_validate(outcome.entry),
        revert_entry_id=outcome.revert.audit_entry_id if outcome.revert else None,
        new_version=outcome.revert.new_version if outcome.revert else None,
    )


@router.get(
    "/entries",
    response_model=AuditEntryListResponse,
    summary="List audit entries",
    description="Newest first. Shows unreviewed entries unless review_status is given.",
)
async def list_entries(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    operation: Optional[AuditOperation] = Query(None),
    job_number: Optional[str] = Query(None, description="Match against the job number"),
    review_status: ReviewFilter = Query("unreviewed"),
    table_name: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
):
    entries, total = await AuditService(db).list_entries(
        skip=skip,
        limit=limit,
        **_filters(date_from, date_to, operation, job_number, review_status, table_name),
    )
    return AuditEntryListResponse(
        entries=[AuditEntryResponse.model_validate(entry) for entry in entries],
        total=total,
    )


@router.get(
    "/entries/export.csv",
    summary="Export audit entries as CSV",
)
async def export_entries(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    operation: Optional[AuditOperation] = Query(None),
    job_number: Optional[str] = Query(None),
    review_status: ReviewFilter = Query("unreviewed"),
    table_name: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_session),
):
    content = await AuditService(db).export_csv(
        **_filters(date_from, date_to, operation, job_number, review_status, table_name)
    )
    filename = f"changes-review-{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
    return StreamingResponse(
        io.BytesIO(content.encode("utf-8")),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get(
    "/entries/{entry_id}",
    response_model=AuditEntryResponse,
    summary="Get audit entry",
)
async def get_entry(
    entry_id: int,
    db: AsyncSession = Depends(get_async_session),
):
    entry = await AuditService(db).get_entry(entry_id)
    if entry is None:
        raise NotFoundException("AuditEntry", entry_id)
    return AuditEntryResponse.model_validate(entry)


@router.post(
    "/entries/{entry_id}/accept",
    response_model=ReviewResultResponse,
    summary="Accept change",
    description="Mark reviewed. Fails with 409 ALREADY_REVIEWED if already accepted or rejected.",
)
async def accept_entry(
    entry_id: int,
    request: Optional[ReviewRequest] = None,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    outcome = await ReviewService(db).accept(
        entry_id, reviewer=actor, note=request.note if request else None
    )
    return _outcome_response(outcome)


@router.post(
    "/entries/{entry_id}/reject",
    response_model=ReviewResultResponse,
    summary="Reject change",
    description="Revert the record to the entry's old values and mark the entry rejected.",
)
async def reject_entry(
    entry_id: int,
    request: Optional[ReviewRequest] = None,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    outcome = await ReviewService(db).reject(
        entry_id, reviewer=actor, note=request.note if request else None
    )
    return _outcome_response(outcome)
