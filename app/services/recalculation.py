"""
Workshop Ledger - Recalculation Engine

Derives a job's money fields from the fields that produce them.

    parts_subtotal  = sum(quantity x unit_price) over line items
    labour_total    = labour_hours x labour_rate
    subtotal        = parts_subtotal + labour_total + transport + sharpening + small repairs
    discount_amount = subtotal x value/100 (percent) | value (fixed) | 0, capped at subtotal
    gst             = (subtotal - discount_amount) x 10%
    grand_total     = subtotal - discount_amount + gst
    balance_due     = max(0, grand_total - deposit - payments)

Every amount is a Decimal rounded half-up to cents. Line totals are rounded
before they are summed, so the parts subtotal always equals the sum of the
stored line totals. Nothing here touches the database.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional

from app.models.job import DiscountType


# Goods and services tax. Jurisdictional constant, deliberately not a setting.
GST_RATE = Decimal("0.10")

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

# Job fields that feed the calculation; touching any of them forces a recalculation
MONEY_INPUT_FIELDS = frozenset({
    "line_items",
    "labour_hours",
    "labour_rate",
    "transport_total_charge",
    "sharpen_total_charge",
    "small_repair_total",
    "discount_type",
    "discount_value",
    "service_deposit",
})

# Fields written by the engine, never by a caller
DERIVED_FIELDS = (
    "parts_subtotal",
    "labour_total",
    "subtotal",
    "discount_amount",
    "gst",
    "grand_total",
    "amount_paid",
    "balance_due",
)


def to_money(value: Any) -> Decimal:
    """Coerce a number, string or None to a Decimal rounded to cents."""
    if value is None or value == "":
        return ZERO
    if not isinstance(value, Decimal):
        # str() first so floats do not carry binary noise into the Decimal
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    """total_price of a line item."""
    return to_money(Decimal(str(quantity or 0)) * Decimal(str(unit_price or 0)))


def _get(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


@dataclass(frozen=True)
class JobTotals:
    """Result of one recalculation."""
    parts_subtotal: Decimal
    labour_total: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    gst: Decimal
    grand_total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    line_totals: List[Decimal] = field(default_factory=list)

    def as_dict(self) -> dict:
        """Derived fields keyed by column name (line totals excluded)."""
        return {name: getattr(self, name) for name in DERIVED_FIELDS}


def calculate_discount(
    subtotal: Decimal,
    discount_type: Optional[DiscountType],
    discount_value: Any,
) -> Decimal:
    """Discount in currency, never more than the subtotal and never negative."""
    value = to_money(discount_value)
    discount_type = DiscountType(discount_type) if discount_type else DiscountType.NONE

    if discount_type == DiscountType.PERCENT:
        amount = to_money(subtotal * value / Decimal("100"))
    elif discount_type == DiscountType.FIXED:
        amount = value
    else:
        amount = ZERO

    return max(ZERO, min(amount, subtotal))


def calculate_job_totals(
    line_items: Iterable[Any] = (),
    *,
    labour_hours: Any = 0,
    labour_rate: Any = 0,
    transport_total_charge: Any = 0,
    sharpen_total_charge: Any = 0,
    small_repair_total: Any = 0,
    discount_type: Optional[DiscountType] = DiscountType.NONE,
    discount_value: Any = 0,
    service_deposit: Any = 0,
    payments_total: Any = 0,
) -> JobTotals:
    """
    Compute every derived money field of a job.

    `line_items` may be ORM rows, pydantic models or dicts; each needs
    `quantity` and `unit_price`.
    """
    line_totals = [line_total(_get(item, "quantity"), _get(item, "unit_price")) for item in line_items]
    parts_subtotal = sum(line_totals, ZERO)

    labour_total = to_money(Decimal(str(labour_hours or 0)) * Decimal(str(labour_rate or 0)))

    ancillary = (
        to_money(transport_total_charge)
        + to_money(sharpen_total_charge)
        + to_money(small_repair_total)
    )
    subtotal = parts_subtotal + labour_total + ancillary

    discount_amount = calculate_discount(subtotal, discount_type, discount_value)
    after_discount = subtotal - discount_amount

    gst = to_money(after_discount * GST_RATE)
    grand_total = after_discount + gst

    amount_paid = to_money(payments_total)
    balance_due = max(ZERO, grand_total - to_money(service_deposit) - amount_paid)

    return JobTotals(
        parts_subtotal=parts_subtotal,
        labour_total=labour_total,
        subtotal=subtotal,
        discount_amount=discount_amount,
        gst=gst,
        grand_total=grand_total,
        amount_paid=amount_paid,
        balance_due=balance_due,
        line_totals=line_totals,
    )


def totals_for_job(job: Any, line_items: Optional[Iterable[Any]] = None, payments_total: Any = None) -> JobTotals:
    """Recalculate from a job row (or snapshot dict) as it currently stands."""
    if line_items is None:
        line_items = _get(job, "line_items") or []
    if payments_total is None:
        payments_total = _get(job, "amount_paid")
    return calculate_job_totals(
        line_items,
        labour_hours=_get(job, "labour_hours"),
        labour_rate=_get(job, "labour_rate"),
        transport_total_charge=_get(job, "transport_total_charge"),
        sharpen_total_charge=_get(job, "sharpen_total_charge"),
        small_repair_total=_get(job, "small_repair_total"),
        discount_type=_get(job, "discount_type"),
        discount_value=_get(job, "discount_value"),
        service_deposit=_get(job, "service_deposit"),
        payments_total=payments_total,
    )
