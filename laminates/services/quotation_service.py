"""
Quotation write coordinator

Create and update run as: validate -> stage images -> persist rows (one
transaction) -> render PDF -> persist pdf_path. Everything up to and including
the row transaction is all-or-nothing. Rendering happens after commit and is
best-effort: a failed render is logged and reported in the outcome, and the
quotation keeps whatever pdf_path it had before.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from laminates.core.config import Settings, get_settings
from laminates.core.constants import (
    DiscountType, MAX_DESCRIPTION_LENGTH, MAX_REMARKS_LENGTH, PDF_MIME_TYPE, PriceType, ProductUnit,
)
from laminates.core.errors import (
    AccessDeniedError, ConflictError, NotFoundError, QuotationServiceError, RenderFailedError,
    TooManyImagesError, ValidationFailedError,
)
from laminates.core.pagination import PaginatedResult, PaginationParams
from laminates.db.models import Item, Quotation
from laminates.services.blob_store import BlobDeletionReport
from laminates.services.document_model import QuotationDocument, document_from_quotation
from laminates.services.image_pipeline import EmbeddedImage, ImagePipeline, probe_dimensions, sniff_mime_type
from laminates.services.layout_engine import Letterhead, layout_document
from laminates.services.pdf_renderer import render_pdf
from laminates.services.repositories import QuotationRepository

logger = logging.getLogger(__name__)

PDF_FAILED_NOTE = "(PDF generation failed)"

_UNITS = {unit.value for unit in ProductUnit}
_PRICE_TYPES = {price_type.value for price_type in PriceType}
_DISCOUNT_TYPES = {discount_type.value for discount_type in DiscountType}


@dataclass
class ImageUpload:
    data: bytes
    content_type: Optional[str]
    filename: Optional[str] = None


@dataclass
class ItemInput:
    product_id: str
    rate: Any
    quantity: int = 1
    unit: Optional[str] = None
    description: Optional[str] = None
    location_id: Optional[str] = None
    discount: Any = None
    discount_type: Optional[str] = None
    uploads: List[ImageUpload] = field(default_factory=list)
    # Paths already stored on this quotation that the caller wants to keep
    keep_images: List[str] = field(default_factory=list)


@dataclass
class QuotationDraft:
    quotation_date: datetime
    customer_id: str
    items: List[ItemInput]
    price_type: str = PriceType.EXCLUSIVE_TAX.value
    remarks: Optional[str] = None
    last_shared_date: Optional[datetime] = None


@dataclass
class WriteOutcome:
    quotation: Quotation
    document: QuotationDocument
    pdf_rendered: bool
    note: Optional[str] = None

    def message(self, base: str) -> str:
        return f"{base} {self.note}" if self.note else base


@dataclass
class _StagedItem:
    item: ItemInput
    product_unit: str
    paths: List[str]
    rate: Decimal
    discount: Optional[Decimal]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; they are stored as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _decimal(value, field_name: str, item_index: Optional[int] = None) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        result = None
    if result is None or not result.is_finite():
        raise ValidationFailedError(
            f"{field_name} must be a number",
            details={"field": field_name, "item_index": item_index},
        )
    return result


class QuotationService:
    """
    Coordinates quotation writes across the database, blob store and PDF renderer
    """

    def __init__(self, db: Session, blob_store, settings: Optional[Settings] = None,
                 image_pipeline: Optional[ImagePipeline] = None):
        self.db = db
        self.blob_store = blob_store
        self.settings = settings or get_settings()
        self.images = image_pipeline or ImagePipeline(blob_store, self.settings)
        self.repository = QuotationRepository(db)
        self._letterhead_image: Optional[EmbeddedImage] = None
        self._letterhead_loaded = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_quotation(self, quotation_id: str) -> Quotation:
        quotation = self.repository.load_graph(quotation_id)
        if quotation is None:
            raise NotFoundError("Quotation not found", details={"entity": "Quotation", "id": quotation_id})
        return quotation

    def list_quotations(self, params: PaginationParams, customer_id: Optional[str] = None,
                        start_date: Optional[datetime] = None,
                        end_date: Optional[datetime] = None) -> PaginatedResult:
        return self.repository.list(params, customer_id=customer_id, start_date=start_date, end_date=end_date)

    def get_public_quotation(self, quotation_id: str, now: Optional[datetime] = None) -> Quotation:
        """Quotation for the unauthenticated share link, valid for a fixed period after sharing"""
        quotation = self.get_quotation(quotation_id)
        shared_at = as_utc(quotation.last_shared_date)
        if shared_at is None:
            raise AccessDeniedError(
                "Quotation has not been shared",
                details={"reason": "not_shared", "id": quotation_id},
            )
        expires_at = shared_at + relativedelta(months=self.settings.public_access_expiry_months)
        now = as_utc(now) or datetime.now(timezone.utc)
        if now > expires_at:
            raise AccessDeniedError(
                "Public access to this quotation has expired",
                details={"reason": "expired", "id": quotation_id, "expired_at": expires_at.isoformat()},
            )
        return quotation

    def public_url(self, path: Optional[str]) -> Optional[str]:
        return self.blob_store.public_url(path)

    # ------------------------------------------------------------------
    # Validation and staging
    # ------------------------------------------------------------------

    def _validate_header(self, fields: Mapping[str, Any]) -> None:
        price_type = fields.get("price_type")
        if price_type is not None and price_type not in _PRICE_TYPES:
            raise ValidationFailedError(
                f"Invalid price type: {price_type}",
                details={"field": "price_type", "allowed": sorted(_PRICE_TYPES)},
            )
        remarks = fields.get("remarks")
        if remarks is not None and len(remarks) > MAX_REMARKS_LENGTH:
            raise ValidationFailedError(
                f"Remarks must not exceed {MAX_REMARKS_LENGTH} characters",
                details={"field": "remarks"},
            )
        if "customer_id" in fields and fields["customer_id"] is not None:
            if not self.repository.customer_exists(fields["customer_id"]):
                raise NotFoundError(
                    "Customer not found",
                    details={"entity": "Customer", "id": fields["customer_id"]},
                )

    def _validate_items(self, items: List[ItemInput], existing_paths: Optional[set] = None) -> List[_StagedItem]:
        """Check every item before anything is uploaded or written"""
        if not items:
            raise ValidationFailedError("At least one item is required", details={"field": "items"})

        existing_paths = existing_paths or set()
        limit = self.settings.max_images_per_item
        staged: List[_StagedItem] = []

        for index, item in enumerate(items):
            if not item.product_id:
                raise ValidationFailedError(
                    "Product is required", details={"field": "product_id", "item_index": index}
                )
            rate = _decimal(item.rate, "rate", index)
            if rate < 0:
                raise ValidationFailedError(
                    "Rate must be a non-negative number", details={"field": "rate", "item_index": index}
                )
            if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity < 1:
                raise ValidationFailedError(
                    "Quantity must be a positive integer", details={"field": "quantity", "item_index": index}
                )
            discount = None
            if item.discount is not None and item.discount != "":
                discount = _decimal(item.discount, "discount", index)
                if discount < 0:
                    raise ValidationFailedError(
                        "Discount must be a non-negative number",
                        details={"field": "discount", "item_index": index},
                    )
            if item.discount_type is not None and item.discount_type not in _DISCOUNT_TYPES:
                raise ValidationFailedError(
                    f"Invalid discount type: {item.discount_type}",
                    details={"field": "discount_type", "item_index": index, "allowed": sorted(_DISCOUNT_TYPES)},
                )
            if discount is not None and discount > 0 and item.discount_type is None:
                raise ValidationFailedError(
                    "Discount type is required when a discount is given",
                    details={"field": "discount_type", "item_index": index},
                )
            if item.unit is not None and item.unit not in _UNITS:
                raise ValidationFailedError(
                    f"Invalid unit: {item.unit}",
                    details={"field": "unit", "item_index": index, "allowed": sorted(_UNITS)},
                )
            if item.description and len(item.description) > MAX_DESCRIPTION_LENGTH:
                raise ValidationFailedError(
                    f"Description must not exceed {MAX_DESCRIPTION_LENGTH} characters",
                    details={"field": "description", "item_index": index},
                )

            received = len(item.uploads) + len(item.keep_images)
            if received > limit:
                raise TooManyImagesError(
                    f"Item {index + 1}: Maximum {limit} images allowed per item",
                    details={"item_index": index, "limit": limit, "received": received},
                )
            unknown = [path for path in item.keep_images if path not in existing_paths]
            if unknown:
                raise ValidationFailedError(
                    "Kept images must belong to this quotation",
                    details={"field": "images", "item_index": index, "paths": unknown},
                )
            for upload in item.uploads:
                self.images.validate(upload.data, upload.content_type)

            staged.append(_StagedItem(item=item, product_unit="", paths=list(item.keep_images),
                                      rate=rate, discount=discount))

        product_ids = {item.product_id for item in items}
        products = self.repository.products_by_ids(product_ids)
        if len(products) != len(product_ids):
            missing = sorted(product_ids - set(products))
            raise NotFoundError(
                "One or more products not found",
                details={"entity": "Product", "ids": missing},
            )

        location_ids = {item.location_id for item in items if item.location_id}
        locations = self.repository.locations_by_ids(location_ids)
        if len(locations) != len(location_ids):
            raise NotFoundError(
                "One or more locations not found",
                details={"entity": "Location", "ids": sorted(location_ids - set(locations))},
            )

        for entry in staged:
            entry.product_unit = products[entry.item.product_id].unit
        return staged

    async def _stage_images(self, quotation_id: str, staged: List[_StagedItem]) -> List[str]:
        """Upload new images; on any failure remove what was already uploaded"""
        uploaded: List[str] = []
        scope = f"{quotation_id}/items"
        try:
            for entry in staged:
                for upload in entry.item.uploads:
                    ref = await self.images.ingest(upload.data, upload.content_type, scope)
                    uploaded.append(ref.path)
                    entry.paths.append(ref.path)
        except Exception:
            await self.images.discard(uploaded, "image staging rollback")
            raise
        return uploaded

    def _build_items(self, staged: List[_StagedItem]) -> List[Item]:
        items = []
        for entry in staged:
            item = entry.item
            discount = entry.discount
            discount_type = item.discount_type if discount is not None else None
            items.append(Item(
                product_id=item.product_id,
                location_id=item.location_id or None,
                description=item.description,
                rate=entry.rate,
                discount=discount,
                discount_type=discount_type,
                unit=item.unit or entry.product_unit,
                images=list(entry.paths),
                quantity=item.quantity,
            ))
        return items

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_quotation(self, draft: QuotationDraft, user_id: Optional[str] = None) -> WriteOutcome:
        started = time.monotonic()
        header = {
            "customer_id": draft.customer_id,
            "price_type": draft.price_type,
            "remarks": draft.remarks,
        }
        if not draft.customer_id:
            raise ValidationFailedError("Customer is required", details={"field": "customer_id"})
        if draft.quotation_date is None:
            raise ValidationFailedError("Quotation date is required", details={"field": "quotation_date"})
        self._validate_header(header)
        staged = self._validate_items(draft.items)

        quotation_id = str(uuid.uuid4())
        uploaded = await self._stage_images(quotation_id, staged)

        quotation = Quotation(
            id=quotation_id,
            quotation_date=draft.quotation_date,
            customer_id=draft.customer_id,
            last_shared_date=draft.last_shared_date,
            remarks=draft.remarks,
            price_type=draft.price_type or PriceType.EXCLUSIVE_TAX.value,
            created_by=user_id,
        )
        try:
            self.repository.insert_with_items(quotation, self._build_items(staged))
        except IntegrityError as e:
            await self.images.discard(uploaded, "quotation create rollback")
            raise ConflictError(
                "Quotation could not be saved",
                details={"entity": "Quotation", "reason": str(e.orig)},
            ) from e
        except Exception:
            await self.images.discard(uploaded, "quotation create rollback")
            logger.error(f"Error creating quotation {quotation_id}", extra={"quotation_id": quotation_id})
            raise

        outcome = await self._finish_write(quotation_id, previous_pdf=None)
        logger.info(
            f"Quotation {quotation_id} created with {len(staged)} items",
            extra={
                "quotation_id": quotation_id,
                "user_id": user_id,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return outcome

    async def update_quotation(self, quotation_id: str, changes: Dict[str, Any],
                               items: Optional[List[ItemInput]] = None,
                               user_id: Optional[str] = None) -> WriteOutcome:
        """
        Patch supplied header fields and, when ``items`` is given, replace the
        whole item set. Images of replaced items that are not kept are deleted
        from storage once the new rows are committed.
        """
        started = time.monotonic()
        quotation = self.get_quotation(quotation_id)
        allowed = {"quotation_date", "customer_id", "last_shared_date", "remarks", "price_type"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationFailedError(
                f"Unknown fields: {', '.join(sorted(unknown))}",
                details={"field": sorted(unknown)[0]},
            )
        fields = {key: value for key, value in changes.items() if value is not None or key == "remarks"}
        self._validate_header(fields)

        previous_images = set(quotation.all_image_paths())
        staged = self._validate_items(items, previous_images) if items is not None else None
        uploaded = await self._stage_images(quotation_id, staged) if staged else []

        fields["created_by"] = user_id if user_id is not None else quotation.created_by
        previous_pdf = quotation.pdf_path
        try:
            self.repository.replace_items(
                quotation, fields, self._build_items(staged) if staged is not None else None
            )
        except IntegrityError as e:
            await self.images.discard(uploaded, "quotation update rollback")
            raise ConflictError(
                "Quotation could not be saved",
                details={"entity": "Quotation", "reason": str(e.orig)},
            ) from e
        except Exception:
            await self.images.discard(uploaded, "quotation update rollback")
            logger.error(f"Error updating quotation {quotation_id}", extra={"quotation_id": quotation_id})
            raise

        if staged is not None:
            kept = {path for entry in staged for path in entry.paths}
            orphaned = sorted(previous_images - kept)
            if orphaned:
                await self.images.discard(orphaned, "quotation update")

        outcome = await self._finish_write(quotation_id, previous_pdf=previous_pdf)
        logger.info(
            f"Quotation {quotation_id} updated"
            + (f" with {len(staged)} items" if staged is not None else ""),
            extra={
                "quotation_id": quotation_id,
                "user_id": user_id,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return outcome

    async def delete_quotation(self, quotation_id: str) -> BlobDeletionReport:
        """Delete rows first, then every blob they referenced"""
        quotation = self.get_quotation(quotation_id)
        paths = quotation.all_image_paths()
        if quotation.pdf_path:
            paths.append(quotation.pdf_path)

        self.repository.delete(quotation)
        logger.info(f"Quotation {quotation_id} deleted", extra={"quotation_id": quotation_id})
        return await self.images.discard(paths, "quotation delete")

    async def mark_shared(self, quotation_id: str, now: Optional[datetime] = None) -> Quotation:
        quotation = self.get_quotation(quotation_id)
        self.repository.mark_shared(quotation, now or datetime.now(timezone.utc))
        logger.info(f"Quotation {quotation_id} marked as shared", extra={"quotation_id": quotation_id})
        return self.get_quotation(quotation_id)

    async def regenerate_pdf(self, quotation_id: str) -> WriteOutcome:
        """Explicit re-render; a failure here is reported to the caller"""
        quotation = self.get_quotation(quotation_id)
        previous_pdf = quotation.pdf_path
        try:
            new_path = await asyncio.wait_for(
                self._render_and_store(quotation_id), timeout=self.settings.pdf_render_timeout_seconds
            )
        except QuotationServiceError as e:
            if isinstance(e, NotFoundError):
                raise
            raise RenderFailedError(
                f"PDF generation failed: {e.message}", details={"quotation_id": quotation_id}
            ) from e
        except Exception as e:
            logger.error(f"PDF regeneration failed for {quotation_id}: {e}", extra={"quotation_id": quotation_id})
            raise RenderFailedError(
                f"PDF generation failed: {e}", details={"quotation_id": quotation_id}
            ) from e

        await self._replace_previous_pdf(previous_pdf, new_path)
        quotation = self.get_quotation(quotation_id)
        return WriteOutcome(quotation=quotation, document=document_from_quotation(quotation), pdf_rendered=True)

    async def render_pdf(self, quotation_id: str) -> bytes:
        """Render on demand without storing the result"""
        quotation = self.get_quotation(quotation_id)
        document = document_from_quotation(quotation)
        try:
            return await asyncio.wait_for(
                self._compose_pdf(document), timeout=self.settings.pdf_render_timeout_seconds
            )
        except Exception as e:
            logger.error(f"On-demand render failed for {quotation_id}: {e}", extra={"quotation_id": quotation_id})
            raise RenderFailedError(
                f"PDF generation failed: {e}", details={"quotation_id": quotation_id}
            ) from e

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def _finish_write(self, quotation_id: str, previous_pdf: Optional[str]) -> WriteOutcome:
        """Best-effort render after commit, then reload the committed graph"""
        rendered = False
        try:
            new_path = await asyncio.wait_for(
                self._render_and_store(quotation_id), timeout=self.settings.pdf_render_timeout_seconds
            )
            rendered = True
        except Exception as e:
            logger.error(
                f"PDF generation failed for quotation {quotation_id}: {e}",
                extra={"quotation_id": quotation_id},
            )
        if rendered:
            await self._replace_previous_pdf(previous_pdf, new_path)

        quotation = self.get_quotation(quotation_id)
        return WriteOutcome(
            quotation=quotation,
            document=document_from_quotation(quotation),
            pdf_rendered=rendered,
            note=None if rendered else PDF_FAILED_NOTE,
        )

    async def _replace_previous_pdf(self, previous_pdf: Optional[str], new_path: str) -> None:
        if previous_pdf and previous_pdf != new_path:
            await self.images.discard([previous_pdf], "PDF replacement")

    async def _render_and_store(self, quotation_id: str) -> str:
        quotation = self.repository.load_graph(quotation_id)
        if quotation is None:
            raise NotFoundError("Quotation not found", details={"entity": "Quotation", "id": quotation_id})
        document = document_from_quotation(quotation)
        pdf_bytes = await self._compose_pdf(document)
        path = await self.blob_store.put(pdf_bytes, PDF_MIME_TYPE, quotation_id, "pdf")
        self.repository.set_pdf_path(quotation, path)
        logger.info(f"PDF stored for quotation {quotation_id}: {path}", extra={"quotation_id": quotation_id})
        return path

    async def _compose_pdf(self, document: QuotationDocument) -> bytes:
        images = await self.fetch_item_images(document)
        letterhead = await self.letterhead()
        layout = await asyncio.to_thread(layout_document, document, images, letterhead)
        return await asyncio.to_thread(render_pdf, layout, f"Quotation {document.id}", letterhead.company_name)

    async def fetch_item_images(self, document: QuotationDocument) -> Dict[int, Optional[EmbeddedImage]]:
        """Fetch each item's first image concurrently; failures become None"""
        wanted: List[Tuple[int, str]] = [
            (item.position, item.first_image_path) for item in document.items if item.first_image_path
        ]
        if not wanted:
            return {}

        timeout = self.settings.image_fetch_timeout_seconds
        results = await asyncio.gather(
            *(asyncio.wait_for(self.images.fetch_for_embedding(path), timeout=timeout) for _, path in wanted),
            return_exceptions=True,
        )

        images: Dict[int, Optional[EmbeddedImage]] = {}
        for (position, path), result in zip(wanted, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Image {path} unavailable for quotation {document.id}: {result!r}",
                    extra={"quotation_id": document.id},
                )
                images[position] = None
            else:
                images[position] = result
        return images

    async def letterhead(self) -> Letterhead:
        if not self._letterhead_loaded:
            self._letterhead_loaded = True
            path = self.settings.letterhead_image_path
            if path:
                try:
                    data = await asyncio.to_thread(_read_file, path)
                    width, height = probe_dimensions(data)
                    self._letterhead_image = EmbeddedImage(
                        data=data, pixel_width=width, pixel_height=height,
                        mime_type=sniff_mime_type(data) or "image/jpeg",
                    )
                except OSError as e:
                    logger.warning(f"Letterhead image {path} could not be read: {e}")
        return Letterhead(
            company_name=self.settings.company_name,
            tagline=self.settings.company_tagline,
            contact=self.settings.company_contact,
            image=self._letterhead_image,
        )


def _read_file(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()
