"""
Quotation API endpoints
"""
import io
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from dateutil.parser import isoparse
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from laminates.api.schemas import ItemPayload, envelope, paginated
from laminates.auth.dependencies import check_edit_window, get_current_user, require_admin
from laminates.core.constants import ITEM_IMAGE_FIELD_PATTERNS, MAX_PAGE_LIMIT, PDF_MIME_TYPE
from laminates.core.errors import ValidationFailedError
from laminates.core.pagination import PaginationParams
from laminates.db.database import get_db
from laminates.db.models import Quotation, User
from laminates.services.blob_store import get_blob_store
from laminates.services.document_model import QuotationDocument, document_from_quotation
from laminates.services.quotation_service import (
    ImageUpload, ItemInput, QuotationDraft, QuotationService, WriteOutcome,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/quotations", tags=["Quotations"])
public_router = APIRouter(prefix="/api/v1/public", tags=["Public Quotations"])

_items_adapter = TypeAdapter(List[ItemPayload])
_HEADER_FIELDS = ("quotation_date", "customer_id", "last_shared_date", "remarks", "price_type")


def get_quotation_service(db: Session = Depends(get_db), blob_store=Depends(get_blob_store)) -> QuotationService:
    return QuotationService(db, blob_store)


def serialize_quotation(quotation: Quotation, service: QuotationService,
                        document: Optional[QuotationDocument] = None) -> Dict[str, Any]:
    document = document or document_from_quotation(quotation)
    data = quotation.to_dict()
    data["pdf_url"] = service.public_url(quotation.pdf_path)
    data["total_amount"] = str(document.total_amount)
    for item_data, line in zip(data["items"], document.items):
        item_data["line_amount"] = str(line.line_amount)
        item_data["image_urls"] = [service.public_url(path) for path in item_data["images"]]
    return data


def _write_response(outcome: WriteOutcome, message: str, service: QuotationService) -> Dict[str, Any]:
    return envelope(
        outcome.message(message),
        serialize_quotation(outcome.quotation, service, outcome.document),
        pdf_rendered=outcome.pdf_rendered,
    )


def _parse_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return isoparse(str(value).strip())
    except ValueError:
        raise ValidationFailedError(f"Invalid date for {field}", details={"field": field})


def _item_uploads(form, index: int) -> List[Any]:
    """Files for item ``index``; the first field-name convention that has files wins"""
    for pattern in ITEM_IMAGE_FIELD_PATTERNS:
        files = [value for value in form.getlist(pattern.format(index=index)) if hasattr(value, "read")]
        if files:
            return files
    return []


def _parse_items(raw: Any) -> List[ItemPayload]:
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
        raise ValidationFailedError("Items must be a JSON array", details={"field": "items"})
    if not isinstance(data, list):
        raise ValidationFailedError("Items must be a JSON array", details={"field": "items"})
    try:
        return _items_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = list(first.get("loc", ()))
        details = {"field": "items"}
        if location and isinstance(location[0], int):
            details["item_index"] = location[0]
            if len(location) > 1:
                details["field"] = str(location[1])
        raise ValidationFailedError(f"Invalid item: {first.get('msg')}", details=details)


async def _read_form(request: Request) -> Tuple[Dict[str, Any], Optional[List[ItemInput]]]:
    """Header fields present in the form plus the item list (None when not sent)"""
    form = await request.form()

    fields: Dict[str, Any] = {}
    for name in _HEADER_FIELDS:
        if name in form:
            value = form.get(name)
            fields[name] = value if not isinstance(value, str) else value.strip()
    for name in ("quotation_date", "last_shared_date"):
        if name in fields:
            fields[name] = _parse_datetime(fields[name], name)
    if fields.get("price_type") == "":
        fields["price_type"] = None
    if fields.get("customer_id") == "":
        fields["customer_id"] = None

    if "items" not in form:
        return fields, None

    items: List[ItemInput] = []
    for index, payload in enumerate(_parse_items(form.get("items"))):
        uploads = []
        for upload in _item_uploads(form, index):
            uploads.append(ImageUpload(
                data=await upload.read(),
                content_type=upload.content_type,
                filename=upload.filename,
            ))
        items.append(ItemInput(
            product_id=payload.product_id,
            rate=payload.rate,
            quantity=payload.quantity,
            unit=payload.unit.value if payload.unit else None,
            description=payload.description,
            location_id=payload.location_id,
            discount=payload.discount,
            discount_type=payload.discount_type.value if payload.discount_type else None,
            uploads=uploads,
            keep_images=list(payload.images),
        ))
    return fields, items


@router.post("", status_code=201)
async def create_quotation(
    request: Request,
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    """Create a quotation from a multipart form with per-item image files"""
    fields, items = await _read_form(request)
    draft = QuotationDraft(
        quotation_date=fields.get("quotation_date"),
        customer_id=fields.get("customer_id"),
        items=items or [],
        price_type=fields.get("price_type") or "EXCLUSIVE_TAX",
        remarks=fields.get("remarks") or None,
        last_shared_date=fields.get("last_shared_date"),
    )
    outcome = await service.create_quotation(draft, user_id=current_user.id)
    return _write_response(outcome, "Quotation created successfully", service)


@router.get("")
async def list_quotations(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_LIMIT),
    customer_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    result = service.list_quotations(
        PaginationParams(page=page, limit=limit),
        customer_id=customer_id,
        start_date=_parse_datetime(start_date, "start_date"),
        end_date=_parse_datetime(end_date, "end_date"),
    )
    quotations = [serialize_quotation(quotation, service) for quotation in result.items]
    return paginated("Quotations retrieved successfully", "quotations", quotations, result.pagination)


@router.get("/{quotation_id}")
async def get_quotation(
    quotation_id: str,
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    quotation = service.get_quotation(quotation_id)
    return envelope("Quotation retrieved successfully", serialize_quotation(quotation, service))


@router.put("/{quotation_id}")
async def update_quotation(
    quotation_id: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    """Patch header fields; replace all items when an ``items`` field is sent"""
    check_edit_window(current_user, service.get_quotation(quotation_id), settings=service.settings)
    fields, items = await _read_form(request)
    outcome = await service.update_quotation(quotation_id, fields, items, user_id=current_user.id)
    return _write_response(outcome, "Quotation updated successfully", service)


@router.delete("/{quotation_id}")
async def delete_quotation(
    quotation_id: str,
    current_user: User = Depends(require_admin),
    service: QuotationService = Depends(get_quotation_service),
):
    report = await service.delete_quotation(quotation_id)
    if not report.ok:
        logger.warning(f"Quotation {quotation_id} deleted with {len(report.failed)} orphaned blobs",
                       extra={"quotation_id": quotation_id, "user_id": current_user.id})
    return envelope("Quotation deleted successfully")


@router.patch("/{quotation_id}/share")
async def share_quotation(
    quotation_id: str,
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    quotation = await service.mark_shared(quotation_id)
    return envelope("Last shared date updated successfully", serialize_quotation(quotation, service))


@router.post("/{quotation_id}/regenerate-pdf")
async def regenerate_pdf(
    quotation_id: str,
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    outcome = await service.regenerate_pdf(quotation_id)
    return _write_response(outcome, "PDF regenerated successfully", service)


@router.get("/{quotation_id}/pdf")
async def download_pdf(
    quotation_id: str,
    current_user: User = Depends(get_current_user),
    service: QuotationService = Depends(get_quotation_service),
):
    pdf_bytes = await service.render_pdf(quotation_id)
    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type=PDF_MIME_TYPE,
        headers={"Content-Disposition": f'inline; filename="quotation-{quotation_id}.pdf"'},
    )


@public_router.get("/quotations/{quotation_id}")
async def get_public_quotation(
    quotation_id: str,
    service: QuotationService = Depends(get_quotation_service),
):
    """Unauthenticated view of a shared quotation"""
    quotation = service.get_public_quotation(quotation_id)
    return envelope("Quotation retrieved successfully", serialize_quotation(quotation, service))
