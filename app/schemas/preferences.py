"""
Workshop Ledger - Preference Schemas

One explicit struct per preference category. These are plain settings, not
versioned records: saving replaces the stored payload and is not audited.
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Type

from pydantic import BaseModel, ConfigDict, Field


class PreferenceCategory(str, Enum):
    LABEL_PRINT = "label_print"
    QUICK_DESCRIPTIONS = "quick_descriptions"
    TRANSPORT = "transport"


class LabelPrintPreferences(BaseModel):
    """Service label printer layout."""
    model_config = ConfigDict(extra="forbid")

    label_width_mm: int = Field(62, ge=20, le=200)
    label_height_mm: int = Field(100, ge=20, le=300)
    copies: int = Field(1, ge=1, le=10)
    show_qr_code: bool = True
    show_customer_phone: bool = True
    font_size: Literal["small", "medium", "large"] = "medium"
    auto_print_on_create: bool = False


class QuickDescriptionPreferences(BaseModel):
    """Canned problem descriptions offered when booking a job."""
    model_config = ConfigDict(extra="forbid")

    descriptions: List[str] = Field(default_factory=list, max_length=200)


class TransportPreferences(BaseModel):
    """Pick-up / delivery pricing."""
    model_config = ConfigDict(extra="forbid")

    small_machine_charge: Decimal = Field(Decimal("15.00"), ge=0, decimal_places=2)
    large_machine_charge: Decimal = Field(Decimal("30.00"), ge=0, decimal_places=2)
    included_distance_km: Decimal = Field(Decimal("15"), ge=0, decimal_places=2)
    per_km_rate: Decimal = Field(Decimal("0.50"), ge=0, decimal_places=2)


PREFERENCE_MODELS: Dict[PreferenceCategory, Type[BaseModel]] = {
    PreferenceCategory.LABEL_PRINT: LabelPrintPreferences,
    PreferenceCategory.QUICK_DESCRIPTIONS: QuickDescriptionPreferences,
    PreferenceCategory.TRANSPORT: TransportPreferences,
}
