"""Letter template loading and ``{{key}}`` placeholder substitution.

Templates live in ``{template_dir}/{template_id}.html``.  Every occurrence
of each placeholder whose key is present in the variable map is replaced;
placeholders with unknown keys are left verbatim.
"""
from __future__ import annotations

import html
import logging
import re
from collections.abc import Mapping
from pathlib import Path

from app.core.errors import TemplateNotFound

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

_TEMPLATE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def substitute(template_text: str, variables: Mapping[str, object], *, escape: bool = False) -> str:
    """Replace every recognised ``{{key}}`` in *template_text*."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = str(variables[key])
        return html.escape(value, quote=True) if escape else value

    return PLACEHOLDER_RE.sub(_replace, template_text)


class TemplateResolver:
    """Load templates by id from a directory and fill their placeholders.

    ``escape_values`` HTML-escapes substituted values, which is what the
    markup templates shipped with the service need.
    """

    def __init__(self, template_dir: str | Path, *, escape_values: bool = True) -> None:
        self.template_dir = Path(template_dir)
        self.escape_values = escape_values

    def load(self, template_id: str) -> str:
        if not template_id or not _TEMPLATE_ID_RE.match(template_id):
            raise TemplateNotFound(f"Invalid template id {template_id!r}")

        path = self.template_dir / f"{template_id}.html"
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateNotFound(
                f"Template {template_id!r} not readable in {self.template_dir}"
            ) from exc

    def resolve(self, template_id: str, variables: Mapping[str, object]) -> str:
        """Return the template *template_id* with *variables* substituted."""
        rendered = substitute(self.load(template_id), variables, escape=self.escape_values)
        logger.debug("Resolved template %s (%d chars)", template_id, len(rendered))
        return rendered
