"""Renderer registry: maps a strategy name to its renderer class.

Usage
-----
    from app.letters.renderers.registry import get_renderer

    renderer = get_renderer("weasyprint", timeout_s=20)
    pdf = renderer.render(html, layout)

Rules
-----
- Pipeline code selects the strategy by configuration (``RENDERER``),
  never by instantiating a renderer class directly.
- Imports are deferred to lookup time so a missing optional engine does
  not break application start-up for the other strategies.
- ``get_renderer()`` raises ValueError for an unknown strategy name.
"""
from __future__ import annotations

import importlib

from app.letters.renderers.base import BaseRenderer, LayoutOptions  # noqa: F401 (re-exported)

# Strategy name → (module_path, class_name)
_LAZY_REGISTRY: dict[str, tuple[str, str]] = {}

# Strategy name → eagerly registered class (for programmatic register())
_REGISTRY: dict[str, type[BaseRenderer]] = {}


def register(name: str, renderer_cls: type[BaseRenderer]) -> None:
    """Register a renderer class under *name*."""
    if not name or not name.strip():
        raise ValueError("renderer name must be a non-empty string")
    _REGISTRY[name.strip().lower()] = renderer_cls


def available() -> list[str]:
    return sorted(set(_REGISTRY) | set(_LAZY_REGISTRY))


def get_renderer(name: str, **kwargs) -> BaseRenderer:
    """Return an instantiated renderer for strategy *name*."""
    key = (name or "").strip().lower()

    renderer_cls = _REGISTRY.get(key)
    if renderer_cls is None:
        lazy_entry = _LAZY_REGISTRY.get(key)
        if lazy_entry is None:
            raise ValueError(
                f"Unknown renderer {name!r}; expected one of {available()}"
            )
        module_path, class_name = lazy_entry
        mod = importlib.import_module(module_path)
        renderer_cls = getattr(mod, class_name)
    return renderer_cls(**kwargs)


def build_renderer(settings, http_client=None) -> BaseRenderer:
    """Construct the renderer selected by *settings*."""
    name = settings.renderer.strip().lower()
    kwargs: dict = {"timeout_s": settings.render_timeout_s}
    if name == "chromium":
        kwargs["binary"] = settings.chromium_path
    elif name == "remote":
        kwargs.update(
            url=settings.remote_render_url,
            api_key=settings.remote_render_api_key,
            client=http_client,
        )
    return get_renderer(name, **kwargs)


def _register_defaults() -> None:
    _LAZY_REGISTRY["weasyprint"] = ("app.letters.renderers.weasyprint_renderer", "WeasyPrintRenderer")
    _LAZY_REGISTRY["reportlab"] = ("app.letters.renderers.reportlab_renderer", "ReportLabRenderer")
    _LAZY_REGISTRY["chromium"] = ("app.letters.renderers.chromium_renderer", "ChromiumRenderer")
    _LAZY_REGISTRY["remote"] = ("app.letters.renderers.remote_renderer", "RemoteRenderer")


_register_defaults()
