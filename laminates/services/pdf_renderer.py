"""
Paint a LayoutResult onto a reportlab canvas
"""
import io
import logging
from typing import Optional

from reportlab.lib.colors import HexColor
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from laminates.services.layout_engine import (
    FONT_ITALIC, GRAY, IMAGE_PLACEHOLDER, ImageOp, LayoutResult, LineOp, RectOp, TextOp,
)

logger = logging.getLogger(__name__)


def _draw_text(c: canvas.Canvas, op: TextOp, page_height: float) -> None:
    c.setFont(op.font, op.size)
    c.setFillColor(HexColor(op.color))
    y = page_height - op.y
    if op.align == "right":
        c.drawRightString(op.x, y, op.text)
    elif op.align == "center":
        c.drawCentredString(op.x, y, op.text)
    else:
        c.drawString(op.x, y, op.text)


def _draw_rect(c: canvas.Canvas, op: RectOp, page_height: float) -> None:
    y = page_height - op.y - op.height
    if op.fill_color:
        c.setFillColor(HexColor(op.fill_color))
        c.rect(op.x, y, op.width, op.height, fill=1, stroke=0)
    if op.stroke_color:
        c.setStrokeColor(HexColor(op.stroke_color))
        c.setLineWidth(op.line_width)
        c.rect(op.x, y, op.width, op.height, fill=0, stroke=1)


def _draw_line(c: canvas.Canvas, op: LineOp, page_height: float) -> None:
    c.setStrokeColor(HexColor(op.color))
    c.setLineWidth(op.line_width)
    c.line(op.x1, page_height - op.y1, op.x2, page_height - op.y2)


def _draw_image(c: canvas.Canvas, op: ImageOp, page_height: float) -> None:
    try:
        reader = ImageReader(io.BytesIO(op.data))
        c.drawImage(reader, op.x, page_height - op.y - op.height, width=op.width, height=op.height,
                    preserveAspectRatio=True, mask='auto')
    except Exception as e:
        logger.warning(f"Image could not be embedded, drawing placeholder: {e}")
        _draw_text(c, TextOp(op.x + op.width / 2, op.y + op.height / 2 + 3, IMAGE_PLACEHOLDER,
                             FONT_ITALIC, 7, "center", GRAY), page_height)


def render_pdf(layout: LayoutResult, title: Optional[str] = None, author: Optional[str] = None) -> bytes:
    """Render every page of ``layout`` and return the PDF bytes"""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(layout.width, layout.height), invariant=1)
    if title:
        c.setTitle(title)
    if author:
        c.setAuthor(author)

    for page in layout.pages:
        for op in page.ops:
            if isinstance(op, TextOp):
                _draw_text(c, op, layout.height)
            elif isinstance(op, RectOp):
                _draw_rect(c, op, layout.height)
            elif isinstance(op, LineOp):
                _draw_line(c, op, layout.height)
            elif isinstance(op, ImageOp):
                _draw_image(c, op, layout.height)
            else:
                raise TypeError(f"Unknown draw operation: {op!r}")
        c.showPage()

    c.save()
    return buffer.getvalue()
