"""
Quotation Layout Engine

Turns a QuotationDocument into page-relative draw instructions for a single
fixed template: letterhead banner, customer/quotation info block, items table
and a footer with remarks, terms and the company signature line.

Everything here is a pure function of ``(document, images, letterhead)``.
Each section takes a Cursor and returns the next Cursor plus the draw
operations it produced, tagged with the page index they belong to. No canvas,
clock or storage is touched; pdf_renderer paints the result.

Coordinates are PDF points measured from the TOP-LEFT corner of the page
(``y`` grows downwards). Text ops carry the baseline, box ops their top edge.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from reportlab.lib.pagesizes import A4
from reportlab.pdfbase.pdfmetrics import stringWidth

from laminates.core.constants import PriceType
from laminates.services.document_model import (
    Discount, ItemLine, NoDiscount, PerPiece, Percentage, QuotationDocument, to_money,
)
from laminates.services.image_pipeline import EmbeddedImage, sniff_mime_type

# Page geometry
PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 36.0
CONTENT_LEFT = MARGIN
CONTENT_RIGHT = PAGE_WIDTH - MARGIN
CONTENT_WIDTH = CONTENT_RIGHT - CONTENT_LEFT
CONTENT_BOTTOM = PAGE_HEIGHT - MARGIN

# Section sizes
HEADER_HEIGHT = 70.0
TITLE_HEIGHT = 24.0
INFO_BLOCK_HEIGHT = 96.0
SECTION_GAP = 12.0
TABLE_HEADER_HEIGHT = 22.0
ROW_HEIGHT = 60.0
CELL_PADDING = 4.0
MAX_CELL_LINES = 4
SIGNATURE_HEIGHT = 36.0

# Typography
FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"
BODY_SIZE = 8.0
LINE_HEIGHT = 10.0
INFO_SIZE = 9.0
INFO_LINE_HEIGHT = 12.0
FOOTER_SIZE = 8.5
FOOTER_LINE_HEIGHT = 11.0
ELLIPSIS = "..."

# Colours
NAVY = "#1f3a5f"
FILL = "#e8edf3"
BORDER = "#9aa5b1"
ALT_ROW = "#f7f9fb"
GRAY = "#666666"
BLACK = "#000000"
WHITE = "#ffffff"

IMAGE_PLACEHOLDER = "Image unavailable"
NO_IMAGE = "-"

TERMS_AND_CONDITIONS = (
    "Prices are valid for 15 days from the quotation date.",
    "Goods once sold will not be taken back or exchanged.",
    "Delivery charges are extra unless stated otherwise.",
    "Colour and texture may vary slightly from samples and images.",
    "Subject to local jurisdiction.",
)

PRICE_TYPE_LINES = {
    PriceType.INCLUSIVE_TAX.value: "All rates are inclusive of taxes",
    PriceType.EXCLUSIVE_TAX.value: "All rates are exclusive of taxes",
}


@dataclass(frozen=True)
class Column:
    key: str
    title: str
    fraction: float
    align: str


COLUMNS: Tuple[Column, ...] = (
    Column("serial", "#", 0.05, "center"),
    Column("product", "Product / Description", 0.27, "left"),
    Column("location", "Location", 0.11, "center"),
    Column("rate", "Rate", 0.10, "right"),
    Column("unit", "Unit", 0.08, "center"),
    Column("quantity", "Qty", 0.06, "center"),
    Column("discount", "Discount", 0.11, "right"),
    Column("image", "Image", 0.22, "center"),
)


def column_bounds() -> List[Tuple[Column, float, float]]:
    """(column, x, width) for every column; widths sum to CONTENT_WIDTH"""
    bounds = []
    x = CONTENT_LEFT
    for index, column in enumerate(COLUMNS):
        if index == len(COLUMNS) - 1:
            width = CONTENT_RIGHT - x
        else:
            width = CONTENT_WIDTH * column.fraction
        bounds.append((column, x, width))
        x += width
    return bounds


# ---------------------------------------------------------------------------
# Draw instructions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextOp:
    x: float
    y: float
    text: str
    font: str = FONT
    size: float = BODY_SIZE
    align: str = "left"
    color: str = BLACK
    tag: Optional[str] = None


@dataclass(frozen=True)
class RectOp:
    x: float
    y: float
    width: float
    height: float
    fill_color: Optional[str] = None
    stroke_color: Optional[str] = None
    line_width: float = 0.5
    tag: Optional[str] = None


@dataclass(frozen=True)
class LineOp:
    x1: float
    y1: float
    x2: float
    y2: float
    color: str = BORDER
    line_width: float = 0.5
    tag: Optional[str] = None


@dataclass(frozen=True)
class ImageOp:
    x: float
    y: float
    width: float
    height: float
    data: bytes = field(repr=False)
    mime_type: str = "image/jpeg"
    tag: Optional[str] = None


DrawOp = Union[TextOp, RectOp, LineOp, ImageOp]
Placed = Tuple[int, DrawOp]


@dataclass(frozen=True)
class Page:
    number: int
    ops: Tuple[DrawOp, ...]

    def texts(self) -> List[str]:
        return [op.text for op in self.ops if isinstance(op, TextOp)]

    def tagged(self, tag: str) -> List[DrawOp]:
        return [op for op in self.ops if op.tag == tag]


@dataclass(frozen=True)
class LayoutResult:
    pages: Tuple[Page, ...]
    width: float = PAGE_WIDTH
    height: float = PAGE_HEIGHT

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def tagged(self, tag: str) -> List[DrawOp]:
        return [op for page in self.pages for op in page.tagged(tag)]

    def all_text(self) -> List[str]:
        return [text for page in self.pages for text in page.texts()]


@dataclass(frozen=True)
class Letterhead:
    """Company identity printed in the header and signature line"""
    company_name: str
    tagline: str = ""
    contact: str = ""
    image: Optional[EmbeddedImage] = None


@dataclass(frozen=True)
class Cursor:
    page: int
    y: float


# ---------------------------------------------------------------------------
# Formatting and text fitting
# ---------------------------------------------------------------------------

def format_money(value) -> str:
    return f"{to_money(value):,.2f}"


def format_date(value: Optional[Union[date, datetime]]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")


def _plain_number(value: Decimal) -> str:
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_discount(discount: Discount) -> str:
    if isinstance(discount, Percentage):
        return f"{_plain_number(discount.value)}%"
    if isinstance(discount, PerPiece):
        return f"{format_money(discount.value)}/piece"
    if isinstance(discount, NoDiscount):
        return "-"
    raise TypeError(f"Unknown discount variant: {discount!r}")


def text_width(text: str, font: str = FONT, size: float = BODY_SIZE) -> float:
    return stringWidth(text, font, size)


def _split_long_word(word: str, font: str, size: float, max_width: float) -> List[str]:
    pieces = []
    while word and text_width(word, font, size) > max_width:
        cut = 1
        while cut < len(word) and text_width(word[:cut + 1], font, size) <= max_width:
            cut += 1
        pieces.append(word[:cut])
        word = word[cut:]
    if word:
        pieces.append(word)
    return pieces


def wrap_text(text: Optional[str], font: str, size: float, max_width: float) -> List[str]:
    """
    Greedy word wrap measured with the font's real glyph widths.

    Explicit newlines start a new line; blank lines are dropped. Words wider
    than ``max_width`` are broken at character boundaries.
    """
    lines: List[str] = []
    for paragraph in (text or "").splitlines():
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if text_width(candidate, font, size) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            pieces = _split_long_word(word, font, size, max_width)
            lines.extend(pieces[:-1])
            current = pieces[-1]
        if current:
            lines.append(current)
    return lines


def truncate_with_ellipsis(line: str, font: str, size: float, max_width: float) -> str:
    trimmed = line.rstrip()
    while trimmed and text_width(trimmed + ELLIPSIS, font, size) > max_width:
        trimmed = trimmed[:-1]
    return trimmed.rstrip() + ELLIPSIS


def fit_text(text: Optional[str], font: str, size: float, max_width: float, max_lines: int) -> List[str]:
    """Wrap and cap at ``max_lines``; the last kept line gets an ellipsis when text was cut"""
    lines = wrap_text(text, font, size, max_width)
    if len(lines) <= max_lines:
        return lines
    kept = lines[:max_lines]
    kept[-1] = truncate_with_ellipsis(kept[-1], font, size, max_width)
    return kept


def _aligned_x(align: str, x: float, width: float) -> float:
    if align == "center":
        return x + width / 2
    if align == "right":
        return x + width - CELL_PADDING
    return x + CELL_PADDING


def fit_image(pixel_width: int, pixel_height: int, box_width: float, box_height: float) -> Tuple[float, float]:
    """Largest size with the image's aspect ratio that fits in the box"""
    if pixel_width <= 0 or pixel_height <= 0:
        return box_width, box_height
    scale = min(box_width / pixel_width, box_height / pixel_height)
    return pixel_width * scale, pixel_height * scale


def is_embeddable(image: Optional[EmbeddedImage]) -> bool:
    return bool(image is not None and image.data and sniff_mime_type(image.data))


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def layout_header(cursor: Cursor, letterhead: Letterhead) -> Tuple[Cursor, List[Placed]]:
    """Letterhead banner plus the document title"""
    ops: List[DrawOp] = []
    top = cursor.y

    if is_embeddable(letterhead.image):
        image = letterhead.image
        width, height = fit_image(image.pixel_width, image.pixel_height, CONTENT_WIDTH, HEADER_HEIGHT)
        ops.append(ImageOp(
            x=CONTENT_LEFT + (CONTENT_WIDTH - width) / 2,
            y=top + (HEADER_HEIGHT - height) / 2,
            width=width,
            height=height,
            data=image.data,
            mime_type=image.mime_type,
            tag="letterhead",
        ))
    else:
        ops.append(RectOp(CONTENT_LEFT, top, CONTENT_WIDTH, HEADER_HEIGHT, fill_color=NAVY, tag="banner"))
        center = CONTENT_LEFT + CONTENT_WIDTH / 2
        ops.append(TextOp(center, top + 30, letterhead.company_name, FONT_BOLD, 20, "center", WHITE, tag="banner"))
        if letterhead.tagline:
            ops.append(TextOp(center, top + 46, letterhead.tagline, FONT_ITALIC, 9, "center", WHITE))
        if letterhead.contact:
            ops.append(TextOp(center, top + 60, letterhead.contact, FONT, 8, "center", WHITE))

    title_baseline = top + HEADER_HEIGHT + 17
    ops.append(TextOp(CONTENT_LEFT + CONTENT_WIDTH / 2, title_baseline, "QUOTATION", FONT_BOLD, 13, "center", NAVY,
                      tag="title"))

    next_cursor = Cursor(cursor.page, top + HEADER_HEIGHT + TITLE_HEIGHT)
    return next_cursor, [(cursor.page, op) for op in ops]


def _info_lines(entries: Sequence[Tuple[str, str]], width: float) -> List[Tuple[str, str]]:
    fitted = []
    for font, text in entries:
        for line in fit_text(text, font, INFO_SIZE, width, 1):
            fitted.append((font, line))
    return fitted


def layout_info_block(cursor: Cursor, document: QuotationDocument) -> Tuple[Cursor, List[Placed]]:
    """Two fixed-height columns: customer on the left, quotation details on the right"""
    top = cursor.y
    gap = 12.0
    column_width = (CONTENT_WIDTH - gap) / 2
    inner_width = column_width - 2 * CELL_PADDING - 4
    customer = document.customer

    left: List[Tuple[str, str]] = [(FONT_BOLD, customer.name)]
    for line in fit_text(customer.address, FONT, INFO_SIZE, inner_width, 2):
        left.append((FONT, line))
    left.append((FONT, f"Mobile: {customer.mobile_no}"))
    if customer.gst_number:
        left.append((FONT, f"GST No: {customer.gst_number}"))

    reference = "-"
    if customer.reference is not None:
        reference = customer.reference.name
        if customer.reference.mobile_no:
            reference = f"{reference} ({customer.reference.mobile_no})"

    right: List[Tuple[str, str]] = [
        (FONT, f"Quotation No: {document.id}"),
        (FONT, f"Date: {format_date(document.quotation_date)}"),
        (FONT, f"Reference: {reference}"),
        (FONT_BOLD, PRICE_TYPE_LINES.get(document.price_type, PRICE_TYPE_LINES[PriceType.EXCLUSIVE_TAX.value])),
    ]

    ops: List[DrawOp] = []
    for index, (title, entries) in enumerate((("Customer Details", left), ("Quotation Details", right))):
        x = CONTENT_LEFT + index * (column_width + gap)
        ops.append(RectOp(x, top, column_width, INFO_BLOCK_HEIGHT, fill_color=FILL, stroke_color=BORDER))
        ops.append(TextOp(x + CELL_PADDING + 2, top + 14, title, FONT_BOLD, 10, color=NAVY, tag="info-title"))
        baseline = top + 14 + INFO_LINE_HEIGHT + 2
        for font, text in _info_lines(entries, inner_width):
            if baseline > top + INFO_BLOCK_HEIGHT - 4:
                break
            ops.append(TextOp(x + CELL_PADDING + 2, baseline, text, font, INFO_SIZE, tag="info"))
            baseline += INFO_LINE_HEIGHT

    next_cursor = Cursor(cursor.page, top + INFO_BLOCK_HEIGHT + SECTION_GAP)
    return next_cursor, [(cursor.page, op) for op in ops]


def table_header_ops(top: float) -> List[DrawOp]:
    ops: List[DrawOp] = []
    for column, x, width in column_bounds():
        ops.append(RectOp(x, top, width, TABLE_HEADER_HEIGHT, fill_color=NAVY, stroke_color=BORDER))
        ops.append(TextOp(
            _aligned_x(column.align, x, width),
            top + 14,
            column.title,
            FONT_BOLD,
            BODY_SIZE + 0.5,
            column.align,
            WHITE,
            tag="table-header",
        ))
    return ops


def _cell_text(column: Column, item: ItemLine, index: int) -> str:
    if column.key == "serial":
        return str(index + 1)
    if column.key == "product":
        details = item.description or item.product_description
        return f"{item.product_name}\n{details}" if details else item.product_name
    if column.key == "location":
        return item.location_name or "-"
    if column.key == "rate":
        return format_money(item.rate)
    if column.key == "unit":
        return item.unit
    if column.key == "quantity":
        return str(item.quantity)
    if column.key == "discount":
        return format_discount(item.discount)
    raise KeyError(column.key)


def _image_cell_ops(item: ItemLine, image: Optional[EmbeddedImage], x: float, width: float,
                    top: float) -> List[DrawOp]:
    box_width = width - 2 * CELL_PADDING
    box_height = ROW_HEIGHT - 2 * CELL_PADDING
    center_x = x + width / 2

    if item.first_image_path is None:
        return [TextOp(center_x, top + ROW_HEIGHT / 2 + 3, NO_IMAGE, FONT, BODY_SIZE, "center", GRAY)]

    if not is_embeddable(image):
        return [TextOp(center_x, top + ROW_HEIGHT / 2 + 3, IMAGE_PLACEHOLDER, FONT_ITALIC, BODY_SIZE - 1, "center",
                       GRAY, tag="image-placeholder")]

    draw_width, draw_height = fit_image(image.pixel_width, image.pixel_height, box_width, box_height)
    return [ImageOp(
        x=center_x - draw_width / 2,
        y=top + (ROW_HEIGHT - draw_height) / 2,
        width=draw_width,
        height=draw_height,
        data=image.data,
        mime_type=image.mime_type,
        tag="item-image",
    )]


def item_row_ops(item: ItemLine, index: int, top: float, image: Optional[EmbeddedImage]) -> List[DrawOp]:
    """One fixed-height table row"""
    ops: List[DrawOp] = []
    if index % 2 == 1:
        ops.append(RectOp(CONTENT_LEFT, top, CONTENT_WIDTH, ROW_HEIGHT, fill_color=ALT_ROW))

    for column, x, width in column_bounds():
        ops.append(RectOp(x, top, width, ROW_HEIGHT, stroke_color=BORDER, line_width=0.3))
        if column.key == "image":
            ops.extend(_image_cell_ops(item, image, x, width, top))
            continue

        lines = fit_text(_cell_text(column, item, index), FONT, BODY_SIZE, width - 2 * CELL_PADDING, MAX_CELL_LINES)
        baseline = top + CELL_PADDING + BODY_SIZE + 2
        for line_index, line in enumerate(lines):
            font = FONT_BOLD if column.key == "product" and line_index == 0 else FONT
            ops.append(TextOp(
                _aligned_x(column.align, x, width),
                baseline,
                line,
                font,
                BODY_SIZE,
                column.align,
                tag="row-serial" if column.key == "serial" else None,
            ))
            baseline += LINE_HEIGHT
    return ops


def layout_items_table(cursor: Cursor, document: QuotationDocument,
                       images: Mapping[int, Optional[EmbeddedImage]]) -> Tuple[Cursor, List[Placed]]:
    """
    Header row followed by one row per item.

    A row that would cross the bottom margin moves to a new page, which
    starts with a fresh copy of the header row. The last row also needs room
    for the footer below it, so the footer never sits on a page of its own.
    A header row is only drawn together with at least one item row.
    """
    placed: List[Placed] = []
    page, y = cursor.page, cursor.y
    footer_space = SECTION_GAP + footer_height(document)
    last_index = len(document.items) - 1
    header_page = None

    for index, item in enumerate(document.items):
        needed = ROW_HEIGHT + (footer_space if index == last_index else 0.0)
        if header_page != page:
            needed += TABLE_HEADER_HEIGHT
        if y + needed > CONTENT_BOTTOM:
            page, y = page + 1, MARGIN
        if header_page != page:
            placed.extend((page, op) for op in table_header_ops(y))
            y += TABLE_HEADER_HEIGHT
            header_page = page
        placed.extend((page, op) for op in item_row_ops(item, index, y, images.get(item.position)))
        y += ROW_HEIGHT

    if header_page is None:
        placed.extend((page, op) for op in table_header_ops(y))
        y += TABLE_HEADER_HEIGHT

    return Cursor(page, y), placed


def _terms_lines() -> List[str]:
    lines = []
    for number, term in enumerate(TERMS_AND_CONDITIONS, start=1):
        lines.extend(wrap_text(f"{number}. {term}", FONT, FOOTER_SIZE, CONTENT_WIDTH - 2 * CELL_PADDING))
    return lines


def _remarks_block_height(line_count: int) -> float:
    if not line_count:
        return 0.0
    return FOOTER_LINE_HEIGHT + 4 + line_count * FOOTER_LINE_HEIGHT + SECTION_GAP


def _fixed_footer_height() -> float:
    # terms, thank-you line and the signature block pinned to the bottom margin
    terms = FOOTER_LINE_HEIGHT + 4 + len(_terms_lines()) * FOOTER_LINE_HEIGHT + SECTION_GAP
    return terms + FOOTER_LINE_HEIGHT + SIGNATURE_HEIGHT


def max_remarks_lines() -> int:
    """
    Remarks lines that still fit on one page together with a table header,
    one item row and the rest of the footer.
    """
    available = (CONTENT_BOTTOM - MARGIN - TABLE_HEADER_HEIGHT - ROW_HEIGHT - SECTION_GAP
                 - _fixed_footer_height() - (FOOTER_LINE_HEIGHT + 4 + SECTION_GAP))
    return max(1, int(available // FOOTER_LINE_HEIGHT))


def _remarks_lines(document: QuotationDocument) -> List[str]:
    if not document.remarks or not document.remarks.strip():
        return []
    return fit_text(document.remarks.strip(), FONT, FOOTER_SIZE, CONTENT_WIDTH - 2 * CELL_PADDING,
                    max_remarks_lines())


def footer_height(document: QuotationDocument) -> float:
    return _remarks_block_height(len(_remarks_lines(document))) + _fixed_footer_height()


def layout_footer(cursor: Cursor, document: QuotationDocument, letterhead: Letterhead) -> Tuple[Cursor, List[Placed]]:
    """
    Remarks (optional), terms and the company line, all on the last page.

    The signature block is anchored to the bottom-right corner of the content
    area; everything else follows the table.
    """
    page, y = cursor.page, cursor.y + SECTION_GAP
    if y + footer_height(document) > CONTENT_BOTTOM:
        page, y = page + 1, MARGIN

    ops: List[DrawOp] = [LineOp(CONTENT_LEFT, y, CONTENT_RIGHT, y, BORDER, 0.75)]
    text_x = CONTENT_LEFT + CELL_PADDING

    remarks = _remarks_lines(document)
    if remarks:
        y += FOOTER_LINE_HEIGHT + 4
        ops.append(TextOp(text_x, y, "Remarks:", FONT_BOLD, FOOTER_SIZE + 0.5, color=NAVY, tag="remarks-title"))
        for line in remarks:
            y += FOOTER_LINE_HEIGHT
            ops.append(TextOp(text_x, y, line, FONT, FOOTER_SIZE, tag="remarks"))
        y += SECTION_GAP

    y += FOOTER_LINE_HEIGHT + 4
    ops.append(TextOp(text_x, y, "Terms & Conditions:", FONT_BOLD, FOOTER_SIZE + 0.5, color=NAVY, tag="terms-title"))
    for line in _terms_lines():
        y += FOOTER_LINE_HEIGHT
        ops.append(TextOp(text_x, y, line, FONT, FOOTER_SIZE, tag="terms"))
    y += SECTION_GAP

    y += FOOTER_LINE_HEIGHT
    ops.append(TextOp(CONTENT_LEFT + CONTENT_WIDTH / 2, y, f"Thank you for choosing {letterhead.company_name}!",
                      FONT_ITALIC, FOOTER_SIZE, "center", GRAY))

    ops.append(TextOp(CONTENT_RIGHT, CONTENT_BOTTOM - 14, f"For {letterhead.company_name}", FONT_BOLD, 10, "right",
                      NAVY, tag="company-line"))
    ops.append(TextOp(CONTENT_RIGHT, CONTENT_BOTTOM, "Authorised Signatory", FONT, FOOTER_SIZE, "right", GRAY,
                      tag="signatory"))

    return Cursor(page, CONTENT_BOTTOM), [(page, op) for op in ops]


def page_marker_op(number: int, total: int) -> TextOp:
    return TextOp(CONTENT_RIGHT, PAGE_HEIGHT - 20, f"Page {number} of {total}", FONT, 8, "right", GRAY,
                  tag="page-marker")


def layout_document(document: QuotationDocument,
                    images: Optional[Mapping[int, Optional[EmbeddedImage]]] = None,
                    letterhead: Optional[Letterhead] = None) -> LayoutResult:
    """Lay out a whole quotation; identical inputs always give identical output"""
    images = images or {}
    letterhead = letterhead or Letterhead(company_name="")

    placed: List[Placed] = []
    cursor = Cursor(page=0, y=MARGIN)

    cursor, ops = layout_header(cursor, letterhead)
    placed.extend(ops)
    cursor, ops = layout_info_block(cursor, document)
    placed.extend(ops)
    cursor, ops = layout_items_table(cursor, document, images)
    placed.extend(ops)
    cursor, ops = layout_footer(cursor, document, letterhead)
    placed.extend(ops)

    page_count = cursor.page + 1
    per_page: Dict[int, List[DrawOp]] = {index: [] for index in range(page_count)}
    for page_index, op in placed:
        per_page[page_index].append(op)

    pages = tuple(
        Page(number=index + 1, ops=tuple(per_page[index]) + (page_marker_op(index + 1, page_count),))
        for index in range(page_count)
    )
    return LayoutResult(pages=pages)
