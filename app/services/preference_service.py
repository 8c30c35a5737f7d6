"""
Workshop Ledger - Preference Service

Load and save per-category preference structs. Preferences are plain
settings, kept apart from the versioned records.
"""

import logging
from typing import Any, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.preferences import PreferenceRecord
from app.schemas.preferences import PREFERENCE_MODELS, PreferenceCategory
from app.utils.error_handling import ValidationException


logger = logging.getLogger(__name__)


def _category(category: Union[str, PreferenceCategory]) -> PreferenceCategory:
    try:
        return PreferenceCategory(category)
    except ValueError:
        raise ValidationException(
            f"Unknown preference category '{category}'",
            field="category",
            details={"allowed": [c.value for c in PreferenceCategory]},
        )


class PreferenceService:
    """Narrow load/save interface over the preferences table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, category: Union[str, PreferenceCategory]) -> BaseModel:
        """Stored preferences, or the defaults when nothing was saved."""
        category = _category(category)
        model = PREFERENCE_MODELS[category]

        result = await self.db.execute(
            select(PreferenceRecord).where(PreferenceRecord.category == category.value)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return model()
        return model.model_validate(record.payload)

    async def save(self, category: Union[str, PreferenceCategory], payload: Any) -> BaseModel:
        """Validate and replace the stored preferences for a category."""
        category = _category(category)
        model = PREFERENCE_MODELS[category]

        if not isinstance(payload, model):
            try:
                payload = model.model_validate(payload)
            except PydanticValidationError as exc:
                raise ValidationException(
                    f"Invalid {category.value} preferences",
                    details={"errors": [
                        {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
                        for err in exc.errors()
                    ]},
                )

        result = await self.db.execute(
            select(PreferenceRecord).where(PreferenceRecord.category == category.value)
        )
        record = result.scalar_one_or_none()
        data = payload.model_dump(mode="json")

        if record is None:
            self.db.add(PreferenceRecord(category=category.value, payload=data))
        else:
            record.payload = data

        await self.db.commit()
        logger.info(f"Saved {category.value} preferences")
        return payload
