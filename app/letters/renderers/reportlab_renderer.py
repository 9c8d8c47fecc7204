"""Direct PDF drawing with reportlab.

Markup is flattened to headings and paragraphs with BeautifulSoup, then
word-wrapped and drawn onto a canvas page by page.  No external process
and no HTML layout engine: styling in the template is ignored apart from
heading weight.
"""
from __future__ import annotations

import io
import logging
import re

from app.core.errors import RenderContentInvalid, RenderEngineUnavailable
from app.letters.renderers.base import BaseRenderer, LayoutOptions, PageSize

logger = logging.getLogger(__name__)

_BLOCK_TAGS = ["h1", "h2", "h3", "p", "li"]
_WS_RE = re.compile(r"\s+")

_BODY_FONT = ("Helvetica", 11.5)
_HEADING_FONTS = {"h1": ("Helvetica-Bold", 18), "h2": ("Helvetica-Bold", 14), "h3": ("Helvetica-Bold", 12.5)}
_BANNER_COLOR = "#4B2C83"


def extract_blocks(content: str) -> list[tuple[str, str]]:
    """Return ``(tag, text)`` pairs for the printable blocks in *content*."""
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["style", "script", "title", "head"]):
        tag.decompose()

    blocks: list[tuple[str, str]] = []
    for element in soup.find_all(_BLOCK_TAGS):
        # nested blocks are emitted on their own
        if element.find(_BLOCK_TAGS):
            continue
        text = _WS_RE.sub(" ", element.get_text(" ")).strip()
        if text:
            blocks.append((element.name, text))

    if not blocks:
        for line in soup.get_text("\n").splitlines():
            text = _WS_RE.sub(" ", line).strip()
            if text:
                blocks.append(("p", text))
    return blocks


class ReportLabRenderer(BaseRenderer):
    """Draw the letter onto a reportlab canvas."""

    name = "reportlab"

    def _render(self, content: str, layout: LayoutOptions) -> bytes:
        try:
            from reportlab.lib import colors
            from reportlab.lib.pagesizes import A4, letter
            from reportlab.lib.units import mm
            from reportlab.lib.utils import simpleSplit
            from reportlab.pdfgen import canvas
        except ImportError as exc:
            raise RenderEngineUnavailable(f"reportlab is not available: {exc}") from exc

        blocks = extract_blocks(content)
        if not blocks:
            raise RenderContentInvalid("Content has no printable text")

        pagesize = A4 if layout.page_size is PageSize.A4 else letter
        width, height = pagesize
        m = layout.margins
        left, right = m.left * mm, width - m.right * mm
        top, bottom = height - m.top * mm, m.bottom * mm
        text_width = right - left
        if text_width <= 0 or top <= bottom:
            raise RenderContentInvalid("Margins leave no room for content")

        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=pagesize, invariant=1)

        def start_page() -> float:
            if layout.preserve_background:
                pdf.setFillColor(colors.HexColor(_BANNER_COLOR))
                pdf.rect(0, height - 8 * mm, width, 8 * mm, stroke=0, fill=1)
                pdf.setFillColor(colors.black)
            return top

        y = start_page()
        for tag, text in blocks:
            font, size = _HEADING_FONTS.get(tag, _BODY_FONT)
            leading = size * 1.4
            if tag == "li":
                text = f"• {text}"
            for line in simpleSplit(text, font, size, text_width):
                if y - leading < bottom:
                    pdf.showPage()
                    y = start_page()
                y -= leading
                pdf.setFont(font, size)
                pdf.drawString(left, y, line)
            y -= leading * 0.6

        pdf.showPage()
        pdf.save()
        return buffer.getvalue()
