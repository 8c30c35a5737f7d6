"""
Workshop Ledger - Recalculation Engine Tests

Unit tests for derived job totals.
"""

from decimal import Decimal

import pytest

from app.models.job import DiscountType
from app.services.recalculation import (
    DERIVED_FIELDS,
    calculate_discount,
    calculate_job_totals,
    line_total,
    to_money,
    totals_for_job,
)


def _item(quantity, unit_price):
    return {"quantity": Decimal(quantity), "unit_price": Decimal(unit_price)}


class TestLineTotals:
    """total_price = quantity x unit_price, rounded to cents."""

    def test_simple_line(self):
        assert line_total(Decimal("2"), Decimal("25.00")) == Decimal("50.00")

    def test_fractional_quantity_rounds_half_up(self):
        # 1.5 x 3.33 = 4.995
        assert line_total(Decimal("1.5"), Decimal("3.33")) == Decimal("5.00")

    def test_missing_values_are_zero(self):
        assert line_total(None, None) == Decimal("0.00")

    def test_to_money_avoids_float_noise(self):
        assert to_money(0.1 + 0.2) == Decimal("0.30")
        assert to_money("") == Decimal("0.00")


class TestJobTotals:
    """Full derivation of a job's money fields."""

    def test_parts_and_labour(self):
        """2 x $25.00 plus 1h at $89.00, no discount."""
        totals = calculate_job_totals(
            [_item("2", "25.00")],
            labour_hours=Decimal("1"),
            labour_rate=Decimal("89.00"),
        )

        assert totals.parts_subtotal == Decimal("50.00")
        assert totals.labour_total == Decimal("89.00")
        assert totals.subtotal == Decimal("139.00")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.gst == Decimal("13.90")
        assert totals.grand_total == Decimal("152.90")
        assert totals.balance_due == Decimal("152.90")

    def test_ancillary_charges_in_subtotal(self):
        totals = calculate_job_totals(
            [],
            transport_total_charge=Decimal("15.00"),
            sharpen_total_charge=Decimal("12.50"),
            small_repair_total=Decimal("7.50"),
        )

        assert totals.subtotal == Decimal("35.00")
        assert totals.gst == Decimal("3.50")
        assert totals.grand_total == Decimal("38.50")

    def test_parts_subtotal_is_sum_of_rounded_lines(self):
        totals = calculate_job_totals([_item("1.5", "3.33"), _item("1.5", "3.33")])

        assert totals.line_totals == [Decimal("5.00"), Decimal("5.00")]
        assert totals.parts_subtotal == sum(totals.line_totals)

    def test_percent_discount(self):
        totals = calculate_job_totals(
            [_item("1", "200.00")],
            discount_type=DiscountType.PERCENT,
            discount_value=Decimal("10"),
        )

        assert totals.discount_amount == Decimal("20.00")
        assert totals.gst == Decimal("18.00")
        assert totals.grand_total == Decimal("198.00")

    def test_gst_rounds_half_up(self):
        # 0.25 x 10% = 0.025
        totals = calculate_job_totals([_item("1", "0.25")])
        assert totals.gst == Decimal("0.03")

    def test_deposit_and_payments_reduce_balance(self):
        totals = calculate_job_totals(
            [_item("2", "25.00")],
            labour_hours=Decimal("1"),
            labour_rate=Decimal("89.00"),
            service_deposit=Decimal("50.00"),
            payments_total=Decimal("40.00"),
        )

        assert totals.amount_paid == Decimal("40.00")
        assert totals.balance_due == Decimal("62.90")

    def test_balance_never_negative(self):
        totals = calculate_job_totals(
            [_item("1", "10.00")],
            service_deposit=Decimal("100.00"),
        )
        assert totals.balance_due == Decimal("0.00")

    def test_as_dict_has_every_derived_field(self):
        totals = calculate_job_totals([_item("1", "10.00")])
        assert tuple(totals.as_dict()) == DERIVED_FIELDS

    def test_totals_for_snapshot_dict(self):
        """Snapshots store money as strings; the engine accepts them."""
        snapshot = {
            "line_items": [{"quantity": "2.00", "unit_price": "25.00"}],
            "labour_hours": "1.00",
            "labour_rate": "89.00",
            "transport_total_charge": "0.00",
            "sharpen_total_charge": "0.00",
            "small_repair_total": "0.00",
            "discount_type": "none",
            "discount_value": "0.00",
            "service_deposit": "0.00",
            "amount_paid": "0.00",
        }

        assert totals_for_job(snapshot).grand_total == Decimal("152.90")


class TestDiscount:
    """Discounts are capped to the subtotal."""

    @pytest.mark.parametrize(
        "discount_type,value,expected",
        [
            (DiscountType.NONE, Decimal("50"), Decimal("0.00")),
            (DiscountType.PERCENT, Decimal("25"), Decimal("25.00")),
            (DiscountType.PERCENT, Decimal("100"), Decimal("100.00")),
            (DiscountType.FIXED, Decimal("30.00"), Decimal("30.00")),
            (DiscountType.FIXED, Decimal("250.00"), Decimal("100.00")),
            (None, Decimal("30.00"), Decimal("0.00")),
        ],
    )
    def test_discount_amount(self, discount_type, value, expected):
        assert calculate_discount(Decimal("100.00"), discount_type, value) == expected

    def test_fixed_discount_larger_than_subtotal_zeroes_total(self):
        totals = calculate_job_totals(
            [_item("1", "40.00")],
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("60.00"),
        )

        assert totals.discount_amount == Decimal("40.00")
        assert totals.gst == Decimal("0.00")
        assert totals.grand_total == Decimal("0.00")
