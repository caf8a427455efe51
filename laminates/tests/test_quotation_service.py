"""
Tests for the quotation write coordinator

Runs against an in-memory database and a dict-backed blob store, with real
layout and PDF rendering.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from laminates.core.errors import (
    AccessDeniedError, NotFoundError, RenderFailedError, StorageFailedError, TooManyImagesError,
    ValidationFailedError,
)
from laminates.db.models import Item, Quotation
from laminates.services.layout_engine import layout_document
from laminates.services.quotation_service import (
    PDF_FAILED_NOTE, ImageUpload, ItemInput, QuotationDraft, QuotationService,
)
from laminates.tests.fixtures.blob_fixtures import make_image_bytes


def _upload(fmt="PNG", size=(40, 30)):
    return ImageUpload(data=make_image_bytes(fmt, size=size), content_type=f"image/{fmt.lower()}")


@pytest.fixture
def service(test_db, blob_store, settings):
    return QuotationService(test_db, blob_store, settings=settings)


@pytest.fixture
def draft(test_customer, test_product, second_product, test_location, fixed_now):
    return QuotationDraft(
        quotation_date=fixed_now,
        customer_id=test_customer.id,
        remarks="Delivery within 7 days",
        items=[
            ItemInput(product_id=test_product.id, rate=Decimal("100"), quantity=2, discount=Decimal("10"),
                      discount_type="PERCENTAGE", location_id=test_location.id, uploads=[_upload()]),
            ItemInput(product_id=second_product.id, rate="40", quantity=3, discount="5",
                      discount_type="PER_PIECE"),
        ],
    )


class TestCreateQuotation:

    @pytest.mark.asyncio
    async def test_creates_rows_images_and_pdf(self, service, draft, blob_store, test_db, test_user):
        outcome = await service.create_quotation(draft, user_id=test_user.id)

        quotation = outcome.quotation
        assert outcome.pdf_rendered is True
        assert outcome.message("Quotation created successfully") == "Quotation created successfully"
        assert quotation.created_by == test_user.id
        assert quotation.pdf_path in blob_store.objects
        assert blob_store.objects[quotation.pdf_path].startswith(b"%PDF")

        assert [item.position for item in quotation.items] == [0, 1]
        first, second = quotation.items
        assert len(first.images) == 1
        assert first.images[0].startswith(f"quotations/{quotation.id}/items/")
        assert first.images[0] in blob_store.objects
        assert second.images == []
        # unit falls back to the product's unit
        assert second.unit == "METER"

        assert outcome.document.total_amount == Decimal("285.00")

    @pytest.mark.asyncio
    async def test_zero_items_rejected(self, service, draft, blob_store, test_db):
        draft.items = []

        with pytest.raises(ValidationFailedError) as exc_info:
            await service.create_quotation(draft)

        assert exc_info.value.details["field"] == "items"
        assert test_db.query(Quotation).count() == 0
        assert blob_store.objects == {}

    @pytest.mark.asyncio
    async def test_too_many_images_leaves_nothing_behind(self, service, draft, blob_store, test_db):
        draft.items[1].uploads = [_upload() for _ in range(4)]

        with pytest.raises(TooManyImagesError) as exc_info:
            await service.create_quotation(draft)

        assert exc_info.value.details == {"item_index": 1, "limit": 3, "received": 4}
        assert test_db.query(Quotation).count() == 0
        assert test_db.query(Item).count() == 0
        assert blob_store.objects == {}

    @pytest.mark.asyncio
    async def test_unknown_product_rejected(self, service, draft, blob_store, test_db):
        draft.items[1].product_id = "missing-product"

        with pytest.raises(NotFoundError) as exc_info:
            await service.create_quotation(draft)

        assert exc_info.value.details["ids"] == ["missing-product"]
        assert blob_store.objects == {}

    @pytest.mark.asyncio
    async def test_unknown_customer_rejected(self, service, draft):
        draft.customer_id = "missing-customer"
        with pytest.raises(NotFoundError):
            await service.create_quotation(draft)

    @pytest.mark.asyncio
    async def test_invalid_item_fields_carry_item_index(self, service, draft):
        draft.items[1].quantity = 0
        with pytest.raises(ValidationFailedError) as exc_info:
            await service.create_quotation(draft)
        assert exc_info.value.details == {"field": "quantity", "item_index": 1}

    @pytest.mark.asyncio
    async def test_discount_requires_type(self, service, draft):
        draft.items[0].discount_type = None
        with pytest.raises(ValidationFailedError) as exc_info:
            await service.create_quotation(draft)
        assert exc_info.value.details["field"] == "discount_type"

    @pytest.mark.asyncio
    async def test_upload_failure_removes_earlier_uploads(self, service, draft, blob_store, test_db):
        draft.items[1].uploads = [_upload()]
        blob_store.fail_puts_after = 1

        with pytest.raises(StorageFailedError):
            await service.create_quotation(draft)

        assert blob_store.objects == {}
        assert test_db.query(Quotation).count() == 0

    @pytest.mark.asyncio
    async def test_render_failure_keeps_rows(self, service, draft, blob_store, test_db):
        blob_store.fail_pdf_puts = True

        outcome = await service.create_quotation(draft)

        assert outcome.pdf_rendered is False
        assert outcome.message("Quotation created successfully") == (
            f"Quotation created successfully {PDF_FAILED_NOTE}"
        )
        assert outcome.quotation.pdf_path is None
        assert test_db.query(Item).filter(Item.quotation_id == outcome.quotation.id).count() == 2
        assert blob_store.pdf_paths() == []

    @pytest.mark.asyncio
    async def test_unreachable_item_image_still_renders(self, service, draft, blob_store):
        blob_store.fail_gets = True

        outcome = await service.create_quotation(draft)

        assert outcome.pdf_rendered is True
        assert outcome.quotation.pdf_path is not None


class TestUpdateQuotation:

    @pytest.mark.asyncio
    async def test_replaces_items_and_cleans_up_old_blobs(self, service, draft, blob_store, test_user,
                                                          admin_user, test_product):
        created = (await service.create_quotation(draft, user_id=test_user.id)).quotation
        old_image = created.items[0].images[0]
        old_pdf = created.pdf_path

        outcome = await service.update_quotation(
            created.id,
            {"remarks": "Revised"},
            [ItemInput(product_id=test_product.id, rate="250", quantity=1, uploads=[_upload("JPEG")])],
            user_id=admin_user.id,
        )

        quotation = outcome.quotation
        assert quotation.remarks == "Revised"
        assert quotation.created_by == admin_user.id
        assert len(quotation.items) == 1
        assert quotation.items[0].rate == Decimal("250.00")
        new_image = quotation.items[0].images[0]
        assert new_image != old_image
        assert new_image in blob_store.objects
        assert old_image not in blob_store.objects

        assert outcome.pdf_rendered is True
        assert quotation.pdf_path != old_pdf
        assert old_pdf not in blob_store.objects
        assert blob_store.pdf_paths() == [quotation.pdf_path]

    @pytest.mark.asyncio
    async def test_kept_images_survive(self, service, draft, blob_store, test_product):
        created = (await service.create_quotation(draft)).quotation
        old_image = created.items[0].images[0]

        outcome = await service.update_quotation(
            created.id, {},
            [ItemInput(product_id=test_product.id, rate="100", keep_images=[old_image])],
        )

        assert outcome.quotation.items[0].images == [old_image]
        assert old_image in blob_store.objects

    @pytest.mark.asyncio
    async def test_foreign_kept_image_rejected(self, service, draft, test_product):
        created = (await service.create_quotation(draft)).quotation

        with pytest.raises(ValidationFailedError) as exc_info:
            await service.update_quotation(
                created.id, {},
                [ItemInput(product_id=test_product.id, rate="100", keep_images=["quotations/other/x.png"])],
            )
        assert exc_info.value.details["field"] == "images"

    @pytest.mark.asyncio
    async def test_header_only_update_keeps_items(self, service, draft, blob_store):
        created = (await service.create_quotation(draft)).quotation
        item_ids = [item.id for item in created.items]

        outcome = await service.update_quotation(created.id, {"price_type": "INCLUSIVE_TAX"})

        assert outcome.quotation.price_type == "INCLUSIVE_TAX"
        assert [item.id for item in outcome.quotation.items] == item_ids
        assert len(blob_store.image_paths()) == 1

    @pytest.mark.asyncio
    async def test_render_failure_keeps_previous_pdf(self, service, draft, blob_store):
        created = (await service.create_quotation(draft)).quotation
        old_pdf = created.pdf_path
        blob_store.fail_pdf_puts = True

        outcome = await service.update_quotation(created.id, {"remarks": "Changed"})

        assert outcome.pdf_rendered is False
        assert outcome.quotation.pdf_path == old_pdf
        assert old_pdf in blob_store.objects

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, service, draft):
        created = (await service.create_quotation(draft)).quotation
        with pytest.raises(ValidationFailedError):
            await service.update_quotation(created.id, {"pdf_path": "hijack.pdf"})

    @pytest.mark.asyncio
    async def test_missing_quotation(self, service):
        with pytest.raises(NotFoundError):
            await service.update_quotation("missing", {"remarks": "x"})


class TestDeleteQuotation:

    @pytest.mark.asyncio
    async def test_removes_rows_and_blobs(self, service, draft, blob_store, test_db):
        created = (await service.create_quotation(draft)).quotation

        report = await service.delete_quotation(created.id)

        assert report.ok
        assert blob_store.objects == {}
        assert test_db.query(Quotation).count() == 0
        assert test_db.query(Item).count() == 0

    @pytest.mark.asyncio
    async def test_blob_failures_are_reported_not_raised(self, service, draft, blob_store, test_db):
        created = (await service.create_quotation(draft)).quotation
        blob_store.fail_deletes = True

        report = await service.delete_quotation(created.id)

        assert not report.ok
        assert len(report.failed) == 2
        assert test_db.query(Quotation).count() == 0


class TestPublicAccess:

    @pytest.mark.asyncio
    async def test_unshared_quotation_is_not_public(self, service, draft):
        created = (await service.create_quotation(draft)).quotation
        with pytest.raises(AccessDeniedError) as exc_info:
            service.get_public_quotation(created.id)
        assert exc_info.value.details["reason"] == "not_shared"

    @pytest.mark.asyncio
    async def test_link_expires_after_configured_months(self, service, draft):
        created = (await service.create_quotation(draft)).quotation
        shared_at = datetime(2026, 1, 31, 10, 0, tzinfo=timezone.utc)
        await service.mark_shared(created.id, now=shared_at)

        visible = service.get_public_quotation(created.id, now=datetime(2026, 4, 30, 9, 0, tzinfo=timezone.utc))
        assert visible.id == created.id

        with pytest.raises(AccessDeniedError) as exc_info:
            service.get_public_quotation(created.id, now=datetime(2026, 5, 1, 0, 0, tzinfo=timezone.utc))
        assert exc_info.value.details["reason"] == "expired"


class TestRendering:

    @pytest.mark.asyncio
    async def test_regenerate_replaces_pdf(self, service, draft, blob_store):
        created = (await service.create_quotation(draft)).quotation
        old_pdf = created.pdf_path

        outcome = await service.regenerate_pdf(created.id)

        assert outcome.pdf_rendered is True
        assert outcome.quotation.pdf_path != old_pdf
        assert blob_store.pdf_paths() == [outcome.quotation.pdf_path]

    @pytest.mark.asyncio
    async def test_regenerate_failure_raises_and_keeps_pdf(self, service, draft, blob_store):
        created = (await service.create_quotation(draft)).quotation
        old_pdf = created.pdf_path
        blob_store.fail_pdf_puts = True

        with pytest.raises(RenderFailedError):
            await service.regenerate_pdf(created.id)

        assert service.get_quotation(created.id).pdf_path == old_pdf

    @pytest.mark.asyncio
    async def test_render_on_demand_does_not_store(self, service, draft, blob_store):
        created = (await service.create_quotation(draft)).quotation
        stored = dict(blob_store.objects)

        pdf = await service.render_pdf(created.id)

        assert pdf.startswith(b"%PDF")
        assert blob_store.objects == stored

    @pytest.mark.asyncio
    async def test_letterhead_read_failure_falls_back_to_banner(self, test_db, blob_store, settings, tmp_path):
        settings.letterhead_image_path = str(tmp_path / "missing.png")
        service = QuotationService(test_db, blob_store, settings=settings)

        letterhead = await service.letterhead()

        assert letterhead.image is None
        assert letterhead.company_name == "ACME LAMINATES"

    @pytest.mark.asyncio
    async def test_letterhead_image_loaded(self, test_db, blob_store, settings, tmp_path):
        path = tmp_path / "letterhead.png"
        path.write_bytes(make_image_bytes("PNG", size=(600, 100)))
        settings.letterhead_image_path = str(path)
        service = QuotationService(test_db, blob_store, settings=settings)

        letterhead = await service.letterhead()

        assert (letterhead.image.pixel_width, letterhead.image.pixel_height) == (600, 100)


async def _never_finishes(document):
    await asyncio.sleep(5)
    return b"%PDF-late"


class TestTimeouts:
    """Slow storage or rendering degrades the PDF, never the write"""

    @pytest.mark.asyncio
    async def test_slow_image_fetch_renders_placeholder(self, service, draft, blob_store, settings):
        settings.image_fetch_timeout_seconds = 0.05
        blob_store.get_delay = 5

        with patch("laminates.services.quotation_service.layout_document", wraps=layout_document) as layout:
            outcome = await service.create_quotation(draft)

        assert outcome.pdf_rendered is True
        assert outcome.quotation.pdf_path in blob_store.objects
        images = layout.call_args.args[1]
        assert images == {0: None}

    @pytest.mark.asyncio
    async def test_slow_render_on_create_keeps_rows(self, service, draft, blob_store, settings, test_db):
        settings.pdf_render_timeout_seconds = 0.05
        service._compose_pdf = _never_finishes

        outcome = await service.create_quotation(draft)

        assert outcome.pdf_rendered is False
        assert outcome.message("Quotation created successfully").endswith(PDF_FAILED_NOTE)
        assert outcome.quotation.pdf_path is None
        assert test_db.query(Item).filter(Item.quotation_id == outcome.quotation.id).count() == 2
        assert blob_store.pdf_paths() == []

    @pytest.mark.asyncio
    async def test_slow_render_on_update_keeps_previous_pdf(self, service, draft, blob_store, settings):
        created = (await service.create_quotation(draft)).quotation
        old_pdf = created.pdf_path
        settings.pdf_render_timeout_seconds = 0.05
        service._compose_pdf = _never_finishes

        outcome = await service.update_quotation(created.id, {"remarks": "Changed"})

        assert outcome.pdf_rendered is False
        assert outcome.quotation.remarks == "Changed"
        assert outcome.quotation.pdf_path == old_pdf
        assert blob_store.pdf_paths() == [old_pdf]
