"""
Workshop Ledger - Preference Storage Model

One row per preference category. The payload shape is owned by the matching
pydantic struct in app.schemas.preferences; this table never carries
versioned business data.
"""

from datetime import datetime

from sqlalchemy import DateTime, JSON, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class PreferenceRecord(Base):
    """Stored preferences for one category."""

    __tablename__ = "preferences"

    category: Mapped[str] = mapped_column(String(50), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
