import io
import logging
import threading
from textwrap import wrap
from typing import Any, Iterable, List, Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from ..config import get_settings
from ..core.ports import DocRenderer

logger = logging.getLogger(__name__)

MARGIN_X = 56
MARGIN_Y = 56
LINE_HEIGHT = 14
MAX_CHARS_PER_LINE = 90
DEFAULT_FONT = "Helvetica"
DOCUMENT_FONT = "SalesdeskDocument"

TEMPLATE_TITLES = {
    "pricing_form": "Client Offer",
    "reservation_form": "Reservation Form",
    "contract": "Sales Contract",
}


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def register_document_font(font_path: Optional[str]) -> str:
    if not font_path:
        return DEFAULT_FONT
    if DOCUMENT_FONT not in pdfmetrics.getRegisteredFontNames():
        pdfmetrics.registerFont(TTFont(DOCUMENT_FONT, font_path))
        logger.info("Registered document font %s", font_path)
    return DOCUMENT_FONT


def needs_unicode_font(lines: Iterable[str]) -> bool:
    return any(ord(char) > 255 for line in lines for char in line)


def binding_lines(template_key: str, bindings: dict) -> List[str]:
    """Flatten resolved bindings into printable lines, schedule last."""
    lines = [_text(bindings.get("title") or TEMPLATE_TITLES.get(template_key, template_key))]
    if bindings.get("generated_at"):
        lines.append(_text(bindings["generated_at"]))
    lines.append("")
    for key, value in bindings.items():
        if key in ("title", "generated_at", "schedule", "buyers", "labels"):
            continue
        if isinstance(value, dict):
            lines.append(f"{key}:")
            lines.extend(f"  {inner}: {_text(item)}" for inner, item in value.items())
        else:
            lines.append(f"{key}: {_text(value)}")
    for index, buyer in enumerate(bindings.get("buyers") or [], start=1):
        lines.append("")
        lines.append(f"Buyer {index}: {_text(buyer.get('buyer_name'))}")
        lines.extend(f"  {key}: {_text(item)}" for key, item in buyer.items() if key != "buyer_name")
    schedule = bindings.get("schedule") or []
    if schedule:
        lines.append("")
        for row in schedule:
            lines.append(
                " | ".join(
                    _text(row.get(column))
                    for column in ("monthOffset", "label", "amount", "date", "writtenAmount")
                )
            )
    return lines


def write_pdf_bytes(lines: Iterable[str], font_name: str = DEFAULT_FONT) -> bytes:
    buffer = io.BytesIO()
    pdf_canvas = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4

    def _start_page():
        text_stream = pdf_canvas.beginText(MARGIN_X, height - MARGIN_Y)
        text_stream.setFont(font_name, 10)
        return text_stream

    text_stream = _start_page()
    used = 0
    max_lines = int((height - 2 * MARGIN_Y) // LINE_HEIGHT)
    for line in lines:
        normalized = _text(line)
        chunks = wrap(normalized, MAX_CHARS_PER_LINE) or [""]
        for chunk in chunks:
            if used >= max_lines:
                pdf_canvas.drawText(text_stream)
                pdf_canvas.showPage()
                text_stream = _start_page()
                used = 0
            text_stream.textLine(chunk)
            used += 1

    pdf_canvas.drawText(text_stream)
    pdf_canvas.showPage()
    pdf_canvas.save()
    return buffer.getvalue()


class PdfScheduleRenderer(DocRenderer):
    """Plain-text PDF of the bound document; one renderer serves the whole process."""

    def __init__(self, font_path: Optional[str] = None) -> None:
        self._closed = False
        self.font_name = register_document_font(font_path)

    def render(self, template_key: str, bindings: dict) -> bytes:
        if self._closed:
            raise RuntimeError("renderer has been shut down")
        lines = binding_lines(template_key, bindings)
        if self.font_name == DEFAULT_FONT and needs_unicode_font(lines):
            logger.warning("No pdf_font_path configured; non-Latin text in %s will not display", template_key)
        return write_pdf_bytes(lines, self.font_name)

    def close(self) -> None:
        self._closed = True


_renderer: Optional[DocRenderer] = None
_renderer_lock = threading.Lock()


def get_renderer() -> DocRenderer:
    global _renderer
    if _renderer is None:
        with _renderer_lock:
            if _renderer is None:
                _renderer = PdfScheduleRenderer(font_path=get_settings().pdf_font_path)
                logger.info("Document renderer started")
    return _renderer


def shutdown_renderer() -> None:
    global _renderer
    with _renderer_lock:
        if _renderer is not None:
            _renderer.close()
            _renderer = None
            logger.info("Document renderer stopped")
