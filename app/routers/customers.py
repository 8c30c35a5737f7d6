"""
Workshop Ledger - Customers Router

API endpoints for customer management.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.schemas.customer import (
    CustomerCreateRequest,
    CustomerResponse,
    CustomerUpdateRequest,
    CustomerUpdateResultResponse,
)
from app.services.record_store import SOURCE_CUSTOMERS_API, VersionedRecordStore


router = APIRouter()


@router.post(
    "",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create customer",
)
async def create_customer(
    request: CustomerCreateRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    customer = await VersionedRecordStore(db).create_customer(
        request, actor=actor, source=SOURCE_CUSTOMERS_API
    )
    return CustomerResponse.model_validate(customer)


@router.get(
    "/{customer_id}",
    response_model=CustomerResponse,
    summary="Get customer",
)
async def get_customer(
    customer_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    customer = await VersionedRecordStore(db).get_customer(customer_id)
    return CustomerResponse.model_validate(customer)


@router.patch(
    "/{customer_id}",
    response_model=CustomerUpdateResultResponse,
    summary="Update customer",
)
async def update_customer(
    customer_id: UUID,
    request: CustomerUpdateRequest,
    actor: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_async_session),
):
    """Versioned customer update."""
    result = await VersionedRecordStore(db).update_customer(
        customer_id,
        request.expected_version,
        request.patch,
        actor=actor,
        source=SOURCE_CUSTOMERS_API,
    )
    return CustomerUpdateResultResponse(
        updated=result.updated,
        new_version=result.new_version,
        audit_entry_id=result.audit_entry_id,
        customer=CustomerResponse.model_validate(result.record),
    )
