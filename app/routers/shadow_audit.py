"""
Workshop Ledger - Shadow Audit Router

Monitor feed of writes that bypassed the record store.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.models.shadow_audit import ShadowAuditType, ShadowSeverity
from app.schemas.shadow_audit import (
    ShadowAuditEntryResponse,
    ShadowAuditListResponse,
    ShadowAuditSummary,
    ShadowScanResponse,
)
from app.services.shadow_audit_service import ShadowAuditService


router = APIRouter()


@router.get(
    "/entries",
    response_model=ShadowAuditListResponse,
    summary="List detections",
)
async def list_entries(
    audit_type: Optional[ShadowAuditType] = Query(None),
    severity: Optional[ShadowSeverity] = Query(None),
    unresolved_only: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
):
    service = ShadowAuditService(db)
    entries = await service.list_entries(
        audit_type=audit_type,
        severity=severity,
        unresolved_only=unresolved_only,
        skip=skip,
        limit=limit,
    )
    return ShadowAuditListResponse(
        entries=[ShadowAuditEntryResponse.model_validate(entry) for entry in entries],
        summary=ShadowAuditSummary(**await service.summary()),
    )


@router.post(
    "/scan",
    response_model=ShadowScanResponse,
    summary="Run scan now",
)
async def run_scan(
    db: AsyncSession = Depends(get_async_session),
):
    """On-demand scan; the scheduled scan runs in the worker."""
    entries = await ShadowAuditService(db).scan()
    return ShadowScanResponse(
        detected=len(entries),
        entries=[ShadowAuditEntryResponse.model_validate(entry) for entry in entries],
    )


@router.post(
    "/{entry_id}/resolve",
    response_model=ShadowAuditEntryResponse,
    summary="Resolve detection",
)
async def resolve_entry(
    entry_id: UUID,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    entry = await ShadowAuditService(db).resolve(entry_id, resolved_by=actor)
    return ShadowAuditEntryResponse.model_validate(entry)
