"""Remote PDF-as-a-service rendering over HTTP.

POSTs ``{"html": ..., "options": {...}}`` to the configured endpoint and
expects ``application/pdf`` back.  The ``httpx.Client`` is process-wide and
injected; when none is given the renderer opens one per call and closes it
before returning.

Error mapping
-------------
httpx.TimeoutException        -> RenderTimeout
httpx.TransportError, 5xx     -> RenderEngineUnavailable
4xx, non-PDF response body    -> RenderContentInvalid
"""
from __future__ import annotations

import logging

import httpx

from app.core.errors import RenderContentInvalid, RenderEngineUnavailable, RenderTimeout
from app.letters.renderers.base import DEFAULT_TIMEOUT_S, BaseRenderer, LayoutOptions

logger = logging.getLogger(__name__)

_PDF_MAGIC = b"%PDF"


class RemoteRenderer(BaseRenderer):
    """Client for an HTML-to-PDF rendering service."""

    name = "remote"
    bounded_in_thread = False

    def __init__(
        self,
        url: str | None,
        *,
        api_key: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(timeout_s=timeout_s)
        self.url = url
        self.api_key = api_key
        self.client = client

    def _payload(self, content: str, layout: LayoutOptions) -> dict:
        m = layout.margins
        return {
            "html": content,
            "options": {
                "format": layout.page_size.value,
                "margin": {
                    "top": f"{m.top}mm",
                    "right": f"{m.right}mm",
                    "bottom": f"{m.bottom}mm",
                    "left": f"{m.left}mm",
                },
                "printBackground": layout.preserve_background,
            },
        }

    def _post(self, client: httpx.Client, content: str, layout: LayoutOptions) -> httpx.Response:
        headers = {"Accept": "application/pdf"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return client.post(
            self.url,
            json=self._payload(content, layout),
            headers=headers,
            timeout=self.timeout_s,
        )

    def _render(self, content: str, layout: LayoutOptions) -> bytes:
        if not self.url:
            raise RenderEngineUnavailable("REMOTE_RENDER_URL is not configured")

        try:
            if self.client is not None:
                response = self._post(self.client, content, layout)
            else:
                with httpx.Client() as client:
                    response = self._post(client, content, layout)
        except httpx.TimeoutException as exc:
            raise RenderTimeout(
                f"Rendering service timed out after {self.timeout_s}s"
            ) from exc
        except httpx.TransportError as exc:
            raise RenderEngineUnavailable(
                f"Cannot reach rendering service: {exc}"
            ) from exc

        if response.status_code >= 500:
            raise RenderEngineUnavailable(
                f"Rendering service error {response.status_code}"
            )
        if response.status_code >= 400:
            logger.warning("Rendering service rejected content (%d)", response.status_code)
            raise RenderContentInvalid(
                f"Rendering service rejected content ({response.status_code})"
            )

        body = response.content
        if not body.startswith(_PDF_MAGIC):
            raise RenderContentInvalid("Rendering service did not return a PDF")
        return body
