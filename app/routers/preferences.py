"""
Workshop Ledger - Preferences Router
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.services.preference_service import PreferenceService


router = APIRouter()


@router.get("/{category}", summary="Load preferences")
async def load_preferences(
    category: str,
    db: AsyncSession = Depends(get_async_session),
):
    preferences = await PreferenceService(db).load(category)
    return preferences.model_dump(mode="json")


@router.put("/{category}", summary="Save preferences")
async def save_preferences(
    category: str,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_async_session),
):
    preferences = await PreferenceService(db).save(category, payload)
    return preferences.model_dump(mode="json")
