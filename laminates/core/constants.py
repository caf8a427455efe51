"""
Shared enumerations and limits for the quotation backend
"""
from enum import Enum


class UserRole(str, Enum):
    """Roles a user can hold"""
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"


class PriceType(str, Enum):
    """Whether quoted rates include tax"""
    INCLUSIVE_TAX = "INCLUSIVE_TAX"
    EXCLUSIVE_TAX = "EXCLUSIVE_TAX"


class DiscountType(str, Enum):
    """How an item discount is applied"""
    PERCENTAGE = "PERCENTAGE"
    PER_PIECE = "PER_PIECE"


class ProductUnit(str, Enum):
    """Fixed unit vocabulary for products and items"""
    BOX = "BOX"
    CU_FEET = "CU.FEET"
    CDM = "CDM"
    DOZEN = "DOZEN"
    KGS = "KGS"
    METER = "METER"
    PCS = "PCS"
    R_FEET = "R.FEET"
    SET = "SET"
    SQ_MT = "SQ.MT"
    SQ_FT = "SQ.FT"
    SQ_FT_INCHES = "SQ.FT (Inches)"


class ReferenceCategory(str, Enum):
    """Channels through which customers are referred"""
    CARPENTER = "Carpenter"
    INTERIOR_DESIGNER = "Interior Designer"
    DEALER = "Dealer"
    BUILDER = "Builder"
    DIRECT_WALKING = "Direct/Walking"
    STAFF = "Staff"
    RELATION = "Relation"
    OTHER = "Other"


ALLOWED_IMAGE_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
})

PDF_MIME_TYPE = "application/pdf"

# Field limits
MAX_REMARKS_LENGTH = 1000
MAX_DESCRIPTION_LENGTH = 1000
MAX_ADDRESS_LENGTH = 500
MOBILE_NUMBER_PATTERN = r"^[+]?[\d\s\-()]+$"
MOBILE_NUMBER_MIN_LENGTH = 10
MOBILE_NUMBER_MAX_LENGTH = 15

# Pagination
DEFAULT_PAGE = 1
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100

# Multipart field names accepted for per-item uploads, checked in order
ITEM_IMAGE_FIELD_PATTERNS = (
    "items[{index}][images]",
    "item_images_{index}",
    "images_{index}",
    "item_{index}_images",
    "files_{index}",
)
