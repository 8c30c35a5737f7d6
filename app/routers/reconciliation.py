"""
Workshop Ledger - Reconciliation Router

Baseline analysis, baseline export and re-linking after review.
"""

import io
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.routers.jobs import update_result_response
from app.schemas.job import UpdateResultResponse
from app.schemas.reconciliation import ReconciliationReport
from app.services.reconciliation_service import ReconciliationService, mismatches_to_csv


router = APIRouter()


class RelinkRequest(BaseModel):
    job_number: str = Field(..., min_length=1, max_length=20)
    customer_id: UUID
    expected_version: int = Field(..., ge=1)


@router.post(
    "/analyze",
    response_model=ReconciliationReport,
    summary="Analyze baseline",
    description="Body is the baseline file: a JSON array of {jobNumber, customer{id,name}}.",
    responses={200: {"content": {"text/csv": {}}}},
)
async def analyze(
    baseline: Any = Body(...),
    format: Literal["json", "csv"] = Query("json"),
    db: AsyncSession = Depends(get_async_session),
):
    report = await ReconciliationService(db).analyze(baseline)
    if format == "csv":
        filename = f"reconciliation-{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
        return StreamingResponse(
            io.BytesIO(mismatches_to_csv(report.mismatches).encode("utf-8")),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    return report


@router.get(
    "/baseline",
    summary="Export baseline",
    description="Current linkages in the baseline file format, for a future analysis.",
)
async def export_baseline(
    db: AsyncSession = Depends(get_async_session),
):
    return await ReconciliationService(db).export_baseline()


@router.post(
    "/relink",
    response_model=UpdateResultResponse,
    summary="Re-link job to customer",
)
async def relink(
    request: RelinkRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    result = await ReconciliationService(db).relink(
        request.job_number,
        request.customer_id,
        request.expected_version,
        actor=actor,
    )
    return update_result_response(result)
