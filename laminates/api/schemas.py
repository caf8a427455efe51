"""
Request models and response envelope helpers
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from laminates.core.constants import (
    DiscountType, MAX_ADDRESS_LENGTH, MAX_DESCRIPTION_LENGTH, MOBILE_NUMBER_MAX_LENGTH,
    MOBILE_NUMBER_MIN_LENGTH, MOBILE_NUMBER_PATTERN, ProductUnit, ReferenceCategory,
)


def envelope(message: str, data: Any = None, **extra) -> Dict[str, Any]:
    body = {"success": True, "message": message, "data": data}
    body.update(extra)
    return body


def paginated(message: str, key: str, items: List[Any], pagination: Dict[str, Any]) -> Dict[str, Any]:
    return envelope(message, {key: items, "pagination": pagination})


def _mobile_field(required: bool):
    return Field(
        ... if required else None,
        min_length=MOBILE_NUMBER_MIN_LENGTH,
        max_length=MOBILE_NUMBER_MAX_LENGTH,
        pattern=MOBILE_NUMBER_PATTERN,
        description="Mobile number (digits, spaces, dashes, parentheses, optional leading +)",
    )


class ItemPayload(BaseModel):
    """One entry of the ``items`` JSON array in quotation forms"""
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(..., min_length=1)
    rate: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    unit: Optional[ProductUnit] = None
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    location_id: Optional[str] = None
    discount: Optional[Decimal] = Field(None, ge=0)
    discount_type: Optional[DiscountType] = None
    images: List[str] = Field(default_factory=list, description="Stored image paths to keep")

    @field_validator("location_id", "description", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ReferenceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    mobile_no: Optional[str] = _mobile_field(required=False)
    category: ReferenceCategory


class ReferenceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    mobile_no: Optional[str] = _mobile_field(required=False)
    category: Optional[ReferenceCategory] = None


class CustomerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    mobile_no: str = _mobile_field(required=True)
    address: Optional[str] = Field(None, max_length=MAX_ADDRESS_LENGTH)
    gst_number: Optional[str] = Field(None, max_length=20)
    reference_id: Optional[str] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    mobile_no: Optional[str] = _mobile_field(required=False)
    address: Optional[str] = Field(None, max_length=MAX_ADDRESS_LENGTH)
    gst_number: Optional[str] = Field(None, max_length=20)
    reference_id: Optional[str] = None


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    unit: ProductUnit


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    unit: Optional[ProductUnit] = None


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)


def model_fields(model: BaseModel) -> Dict[str, Any]:
    """Only the fields the client actually sent, with enums flattened to values"""
    return model.model_dump(exclude_unset=True, mode="json")
