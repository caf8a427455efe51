"""
Quotation Document Model

Read-only snapshot of one fully hydrated quotation. This is the only input the
layout engine sees, so PDFs can be laid out from hand-built documents without
a database.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from laminates.core.constants import DiscountType, PriceType

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Quantise to 2 places with half-up rounding"""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Percentage:
    value: Decimal


@dataclass(frozen=True)
class PerPiece:
    value: Decimal


@dataclass(frozen=True)
class NoDiscount:
    pass


Discount = Union[Percentage, PerPiece, NoDiscount]


def discount_from_fields(discount, discount_type) -> Discount:
    """Build the discount variant from the stored ``discount``/``discount_type`` pair"""
    if discount is None or discount_type is None:
        return NoDiscount()
    value = discount if isinstance(discount, Decimal) else Decimal(str(discount))
    kind = DiscountType(discount_type)
    if kind is DiscountType.PERCENTAGE:
        return Percentage(value)
    if kind is DiscountType.PER_PIECE:
        return PerPiece(value)
    raise ValueError(f"Unhandled discount type: {discount_type}")


def discount_amount(discount: Discount, rate: Decimal, quantity: int) -> Decimal:
    # Percentages above 100 are not clamped; the line amount may go negative
    if isinstance(discount, Percentage):
        return to_money(rate * quantity * discount.value / HUNDRED)
    if isinstance(discount, PerPiece):
        return to_money(discount.value * quantity)
    if isinstance(discount, NoDiscount):
        return ZERO
    raise TypeError(f"Unknown discount variant: {discount!r}")


@dataclass(frozen=True)
class ReferenceInfo:
    name: str
    mobile_no: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class CustomerInfo:
    id: str
    name: str
    mobile_no: str
    address: Optional[str] = None
    gst_number: Optional[str] = None
    reference: Optional[ReferenceInfo] = None


@dataclass(frozen=True)
class CreatorInfo:
    id: str
    user_name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class ItemLine:
    position: int
    product_name: str
    rate: Decimal
    unit: str
    quantity: int = 1
    discount: Discount = field(default_factory=NoDiscount)
    description: Optional[str] = None
    product_description: Optional[str] = None
    location_name: Optional[str] = None
    image_paths: Tuple[str, ...] = ()

    @property
    def gross_amount(self) -> Decimal:
        return to_money(self.rate * self.quantity)

    @property
    def discount_amount(self) -> Decimal:
        return discount_amount(self.discount, self.rate, self.quantity)

    @property
    def line_amount(self) -> Decimal:
        return to_money(self.gross_amount - self.discount_amount)

    @property
    def first_image_path(self) -> Optional[str]:
        return self.image_paths[0] if self.image_paths else None


@dataclass(frozen=True)
class QuotationDocument:
    id: str
    quotation_date: Union[date, datetime]
    customer: CustomerInfo
    items: Tuple[ItemLine, ...]
    price_type: str = PriceType.EXCLUSIVE_TAX.value
    remarks: Optional[str] = None
    last_shared_date: Optional[datetime] = None
    pdf_path: Optional[str] = None
    creator: Optional[CreatorInfo] = None
    created_at: Optional[datetime] = None

    @property
    def total_amount(self) -> Decimal:
        return to_money(sum((item.line_amount for item in self.items), ZERO))

    @property
    def is_tax_inclusive(self) -> bool:
        return self.price_type == PriceType.INCLUSIVE_TAX.value


def document_from_quotation(quotation) -> QuotationDocument:
    """Map a hydrated ORM ``Quotation`` (see QuotationRepository.load_graph)"""
    customer = quotation.customer
    reference = None
    if customer.reference is not None:
        reference = ReferenceInfo(
            name=customer.reference.name,
            mobile_no=customer.reference.mobile_no,
            category=customer.reference.category,
        )

    creator = None
    if quotation.creator is not None:
        creator = CreatorInfo(
            id=quotation.creator.id,
            user_name=quotation.creator.user_name,
            email=quotation.creator.email,
        )

    items = tuple(
        ItemLine(
            position=index,
            product_name=item.product.name,
            product_description=item.product.description,
            description=item.description,
            location_name=item.location.name if item.location is not None else None,
            rate=to_money(item.rate),
            quantity=item.quantity or 1,
            unit=item.unit,
            discount=discount_from_fields(item.discount, item.discount_type),
            image_paths=tuple(item.images or ()),
        )
        for index, item in enumerate(sorted(quotation.items, key=lambda i: i.position or 0))
    )

    return QuotationDocument(
        id=quotation.id,
        quotation_date=quotation.quotation_date,
        price_type=quotation.price_type,
        remarks=quotation.remarks,
        last_shared_date=quotation.last_shared_date,
        pdf_path=quotation.pdf_path,
        created_at=quotation.created_at,
        customer=CustomerInfo(
            id=customer.id,
            name=customer.name,
            mobile_no=customer.mobile_no,
            address=customer.address,
            gst_number=customer.gst_number,
            reference=reference,
        ),
        creator=creator,
        items=items,
    )
