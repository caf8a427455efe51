"""
Tests for line amounts, discounts and totals
"""
from datetime import datetime
from decimal import Decimal

import pytest

from laminates.services.document_model import (
    CustomerInfo, ItemLine, NoDiscount, PerPiece, Percentage, QuotationDocument,
    discount_amount, discount_from_fields, to_money,
)


def _document(*items, price_type="EXCLUSIVE_TAX"):
    return QuotationDocument(
        id="q-1",
        quotation_date=datetime(2026, 10, 19),
        customer=CustomerInfo(id="c-1", name="Sunil", mobile_no="9123456780"),
        items=tuple(items),
        price_type=price_type,
    )


class TestDiscounts:
    """Discount variants and their amounts"""

    def test_percentage_discount_on_line(self):
        """100 x 2 at 10% leaves 180.00"""
        line = ItemLine(position=0, product_name="Laminate", rate=Decimal("100"), unit="PCS", quantity=2,
                        discount=Percentage(Decimal("10")))

        assert line.gross_amount == Decimal("200.00")
        assert line.discount_amount == Decimal("20.00")
        assert line.line_amount == Decimal("180.00")

    def test_zero_percentage_gives_zero(self):
        assert discount_amount(Percentage(Decimal("0")), Decimal("250"), 4) == Decimal("0.00")

    def test_per_piece_discount_scales_with_quantity(self):
        line = ItemLine(position=0, product_name="Edge band", rate=Decimal("40"), unit="METER", quantity=3,
                        discount=PerPiece(Decimal("5")))

        assert line.discount_amount == Decimal("15.00")
        assert line.line_amount == Decimal("105.00")

    def test_no_discount(self):
        line = ItemLine(position=0, product_name="Laminate", rate=Decimal("99.99"), unit="PCS")
        assert line.discount_amount == Decimal("0.00")
        assert line.line_amount == Decimal("99.99")

    def test_percentage_above_hundred_is_not_clamped(self):
        line = ItemLine(position=0, product_name="Laminate", rate=Decimal("100"), unit="PCS", quantity=1,
                        discount=Percentage(Decimal("150")))
        assert line.line_amount == Decimal("-50.00")

    def test_discount_from_fields(self):
        assert discount_from_fields("10", "PERCENTAGE") == Percentage(Decimal("10"))
        assert discount_from_fields(Decimal("2.5"), "PER_PIECE") == PerPiece(Decimal("2.5"))
        assert discount_from_fields(None, "PERCENTAGE") == NoDiscount()
        assert discount_from_fields(Decimal("5"), None) == NoDiscount()

    def test_discount_from_fields_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            discount_from_fields("5", "BOGUS")


class TestMoney:

    def test_half_up_rounding(self):
        assert to_money(Decimal("2.345")) == Decimal("2.35")
        assert to_money("1.005") == Decimal("1.01")
        assert to_money(None) == Decimal("0.00")

    def test_percentage_discount_rounds_half_up(self):
        # 33.33 * 3 * 12.5% = 12.49875
        assert discount_amount(Percentage(Decimal("12.5")), Decimal("33.33"), 3) == Decimal("12.50")


class TestQuotationDocument:

    def test_total_sums_line_amounts(self):
        document = _document(
            ItemLine(position=0, product_name="A", rate=Decimal("100"), unit="PCS", quantity=2,
                     discount=Percentage(Decimal("10"))),
            ItemLine(position=1, product_name="B", rate=Decimal("40"), unit="METER", quantity=3,
                     discount=PerPiece(Decimal("5"))),
        )
        assert document.total_amount == Decimal("285.00")

    def test_empty_document_total(self):
        assert _document().total_amount == Decimal("0.00")

    def test_tax_inclusive_flag(self):
        assert _document(price_type="INCLUSIVE_TAX").is_tax_inclusive is True
        assert _document().is_tax_inclusive is False

    def test_first_image_path(self):
        line = ItemLine(position=0, product_name="A", rate=Decimal("1"), unit="PCS", image_paths=("a.jpg", "b.jpg"))
        assert line.first_image_path == "a.jpg"
        assert ItemLine(position=0, product_name="A", rate=Decimal("1"), unit="PCS").first_image_path is None
