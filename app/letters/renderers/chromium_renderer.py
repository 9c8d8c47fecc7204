"""Headless-browser rendering via a Chromium/Chrome binary.

The markup is written to a per-call temporary directory and printed with
``--print-to-pdf``.  The browser process and the directory (which also
holds the throwaway browser profile) never outlive ``render()``.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path

from app.core.errors import RenderContentInvalid, RenderEngineUnavailable, RenderTimeout
from app.letters.renderers.base import DEFAULT_TIMEOUT_S, BaseRenderer, LayoutOptions, inject_page_css

logger = logging.getLogger(__name__)


class ChromiumRenderer(BaseRenderer):
    """Print letter markup to PDF with a headless Chromium."""

    name = "chromium"
    bounded_in_thread = False

    def __init__(self, binary: str = "chromium", timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        super().__init__(timeout_s=timeout_s)
        self.binary = binary

    def _command(self, source: Path, output: Path, profile_dir: Path) -> list[str]:
        # page size, margins and background handling travel in the injected @page CSS
        return [
            self.binary,
            "--headless",
            "--disable-gpu",
            "--no-sandbox",
            "--no-first-run",
            "--disable-extensions",
            "--no-pdf-header-footer",
            f"--user-data-dir={profile_dir}",
            f"--print-to-pdf={output}",
            source.as_uri(),
        ]

    def _render(self, content: str, layout: LayoutOptions) -> bytes:
        executable = shutil.which(self.binary)
        if executable is None:
            raise RenderEngineUnavailable(f"Browser binary {self.binary!r} not found on PATH")

        with tempfile.TemporaryDirectory(prefix="offer-render-") as tmp:
            workdir = Path(tmp)
            source = workdir / "letter.html"
            output = workdir / "letter.pdf"
            profile_dir = workdir / "profile"
            source.write_text(inject_page_css(content, layout), encoding="utf-8")

            try:
                process = subprocess.Popen(
                    self._command(source, output, profile_dir),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    cwd=workdir,
                )
            except OSError as exc:
                raise RenderEngineUnavailable(f"Failed to start browser: {exc}") from exc

            try:
                _, stderr = process.communicate(timeout=self.timeout_s)
            except subprocess.TimeoutExpired as exc:
                raise RenderTimeout(
                    f"Browser rendering exceeded {self.timeout_s}s"
                ) from exc
            finally:
                if process.poll() is None:
                    process.kill()
                    process.communicate()
                    logger.warning("Killed browser process %d after timeout", process.pid)

            if process.returncode != 0:
                detail = stderr.decode("utf-8", errors="ignore").strip()[-500:]
                raise RenderContentInvalid(
                    f"Browser exited with status {process.returncode}: {detail}"
                )
            if not output.is_file() or output.stat().st_size == 0:
                raise RenderContentInvalid("Browser produced no PDF output")
            return output.read_bytes()
