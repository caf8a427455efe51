"""
Tests for painting layouts with reportlab
"""
import re
from datetime import datetime
from decimal import Decimal

from laminates.services.document_model import CustomerInfo, ItemLine, QuotationDocument
from laminates.services.image_pipeline import EmbeddedImage
from laminates.services.layout_engine import ImageOp, LayoutResult, Letterhead, Page, layout_document
from laminates.services.pdf_renderer import render_pdf
from laminates.tests.fixtures.blob_fixtures import make_image_bytes

_PAGE_OBJECT = re.compile(rb"/Type /Page\b")


def _document(count):
    return QuotationDocument(
        id="q-pdf",
        quotation_date=datetime(2026, 10, 19),
        customer=CustomerInfo(id="c-1", name="Sunil Shah", mobile_no="9123456780"),
        items=tuple(
            ItemLine(position=i, product_name=f"Laminate {i}", rate=Decimal("100"), unit="PCS",
                     image_paths=("a.png",))
            for i in range(count)
        ),
    )


class TestRenderPdf:

    def test_renders_pdf_bytes(self):
        image = EmbeddedImage(data=make_image_bytes("PNG", size=(60, 40)), pixel_width=60, pixel_height=40,
                              mime_type="image/png")
        layout = layout_document(_document(2), images={0: image, 1: None},
                                 letterhead=Letterhead(company_name="ACME LAMINATES"))

        pdf = render_pdf(layout, title="Quotation q-pdf", author="ACME LAMINATES")

        assert pdf.startswith(b"%PDF")
        assert len(_PAGE_OBJECT.findall(pdf)) == 1

    def test_one_pdf_page_per_layout_page(self):
        layout = layout_document(_document(25), letterhead=Letterhead(company_name="ACME LAMINATES"))
        pdf = render_pdf(layout)
        assert len(_PAGE_OBJECT.findall(pdf)) == layout.page_count

    def test_output_is_deterministic(self):
        layout = layout_document(_document(3), letterhead=Letterhead(company_name="ACME LAMINATES"))
        assert render_pdf(layout) == render_pdf(layout)

    def test_unreadable_image_is_replaced_not_fatal(self):
        broken = ImageOp(x=50, y=50, width=40, height=40, data=b"\x89PNG\r\n\x1a\nbroken", mime_type="image/png")
        layout = LayoutResult(pages=(Page(number=1, ops=(broken,)),))

        pdf = render_pdf(layout)

        assert pdf.startswith(b"%PDF")
