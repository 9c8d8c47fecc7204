"""HTML-to-PDF rendering in-process with WeasyPrint."""
from __future__ import annotations

import logging

from app.core.errors import RenderContentInvalid, RenderEngineUnavailable
from app.letters.renderers.base import BaseRenderer, LayoutOptions, page_css

logger = logging.getLogger(__name__)


class WeasyPrintRenderer(BaseRenderer):
    """Render letter markup through WeasyPrint."""

    name = "weasyprint"

    def _render(self, content: str, layout: LayoutOptions) -> bytes:
        try:
            import weasyprint  # lazy import: native libraries may be missing
        except (ImportError, OSError) as exc:
            raise RenderEngineUnavailable(f"WeasyPrint is not available: {exc}") from exc

        try:
            document = weasyprint.HTML(string=content)
            return document.write_pdf(stylesheets=[weasyprint.CSS(string=page_css(layout))])
        except Exception as exc:
            logger.error("WeasyPrint failed to render letter: %s", type(exc).__name__)
            raise RenderContentInvalid(f"WeasyPrint could not render content: {exc}") from exc
