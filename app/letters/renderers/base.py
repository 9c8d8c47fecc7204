"""Rendering contract shared by every PDF strategy.

Every renderer in app/letters/renderers/ turns final letter markup plus a
``LayoutOptions`` into PDF bytes.  Callers never depend on which strategy
produced the bytes.

Failure contract
----------------
RenderTimeout           : rendering took longer than ``timeout_s``
RenderEngineUnavailable : the engine (library, binary, remote service)
                          could not be started or reached
RenderContentInvalid    : the content could not be turned into a document

Any engine resource a strategy acquires (worker thread, subprocess,
temporary directory) belongs to a single ``render()`` call and is released
before it returns, on success and on every failure path.
"""
from __future__ import annotations

import concurrent.futures
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from app.core.errors import RenderContentInvalid, RenderTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


class PageSize(str, Enum):
    A4 = "A4"
    LETTER = "Letter"

    @classmethod
    def parse(cls, value: str | PageSize) -> PageSize:
        if isinstance(value, PageSize):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unsupported page size {value!r}; expected A4 or Letter")


@dataclass(frozen=True)
class Margins:
    """Page margins in millimetres."""

    top: float = 20.0
    right: float = 20.0
    bottom: float = 20.0
    left: float = 20.0

    @classmethod
    def uniform(cls, value: float) -> Margins:
        return cls(top=value, right=value, bottom=value, left=value)


@dataclass(frozen=True)
class LayoutOptions:
    page_size: PageSize = PageSize.A4
    margins: Margins = field(default_factory=Margins)
    preserve_background: bool = True

    @classmethod
    def from_settings(cls, settings) -> LayoutOptions:
        return cls(
            page_size=PageSize.parse(settings.page_size),
            margins=Margins.uniform(settings.page_margin_mm),
            preserve_background=settings.preserve_background,
        )


# ---------------------------------------------------------------------------
# Page CSS helpers (markup-based strategies)
# ---------------------------------------------------------------------------

_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)


def page_css(layout: LayoutOptions) -> str:
    m = layout.margins
    css = (
        f"@page {{ size: {layout.page_size.value}; "
        f"margin: {m.top}mm {m.right}mm {m.bottom}mm {m.left}mm; }}\n"
    )
    if layout.preserve_background:
        css += "html, body { -webkit-print-color-adjust: exact; print-color-adjust: exact; }\n"
    else:
        css += "* { background: none !important; }\n"
    return css


def inject_page_css(content: str, layout: LayoutOptions) -> str:
    """Insert the layout's ``@page`` rules into *content*."""
    style = f"<style>\n{page_css(layout)}</style>\n"
    if _HEAD_CLOSE_RE.search(content):
        return _HEAD_CLOSE_RE.sub(lambda m: style + m.group(0), content, count=1)
    return style + content


# ---------------------------------------------------------------------------
# BaseRenderer
# ---------------------------------------------------------------------------

class BaseRenderer:
    """Base class for PDF rendering strategies.

    Subclasses implement ``_render()``.  In-process engines run it on a
    worker thread so the call is bounded by ``timeout_s``; strategies with
    their own timeout mechanism (subprocess, HTTP) set
    ``bounded_in_thread = False``.  A timed-out worker thread is abandoned,
    not interrupted.
    """

    name = "base"
    bounded_in_thread = True

    def __init__(self, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.timeout_s = timeout_s

    def render(self, content: str, layout: LayoutOptions | None = None) -> bytes:
        """Return PDF bytes for *content* laid out per *layout*."""
        layout = layout or LayoutOptions()
        if not content or not content.strip():
            raise RenderContentInvalid("Cannot render empty content")

        if not self.bounded_in_thread:
            pdf = self._render(content, layout)
        else:
            pdf = self._render_bounded(content, layout)

        if not pdf:
            raise RenderContentInvalid(f"{self.name} produced an empty document")
        logger.info("Rendered %d byte PDF with %s", len(pdf), self.name)
        return pdf

    def _render_bounded(self, content: str, layout: LayoutOptions) -> bytes:
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"render-{self.name}"
        )
        try:
            future = executor.submit(self._render, content, layout)
            try:
                return future.result(timeout=self.timeout_s)
            except concurrent.futures.TimeoutError as exc:
                raise RenderTimeout(
                    f"{self.name} rendering exceeded {self.timeout_s}s"
                ) from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _render(self, content: str, layout: LayoutOptions) -> bytes:
        raise NotImplementedError(
            f"{type(self).__name__}._render() is not implemented"
        )
