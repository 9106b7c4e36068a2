"""HTML template filling and PDF rendering for Power of Attorney documents."""
from __future__ import annotations

import html
import logging
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).resolve().parents[1] / "templates" / "poa.html"

_template: str | None = None


def load_template(path: Path | None = None) -> str:
    """Return the PoA template, reading the bundled file only once."""

    global _template
    if path is not None:
        return path.read_text(encoding="utf-8")
    if _template is None:
        _template = TEMPLATE_PATH.read_text(encoding="utf-8")
    return _template


def fill_template(template: str, name: str, address: str) -> str:
    return template.replace("{applicant_name}", html.escape(name or "", quote=False)).replace(
        "{applicant_address}", html.escape(address or "", quote=False)
    )


class DocumentRenderer(Protocol):
    """Contract for HTML to PDF renderers."""

    async def render_many(self, documents: Sequence[str]) -> list[bytes]:
        """Render each HTML document to a PDF, preserving order."""


class PdfRenderer:
    """Renders HTML with headless Chromium, one browser per batch."""

    def __init__(
        self,
        *,
        launch_args: Sequence[str] | None = None,
        page_format: str = "A4",
        wait_until: str = "networkidle",
    ) -> None:
        self._launch_args = list(launch_args or ["--no-sandbox", "--disable-dev-shm-usage"])
        self._format = page_format
        self._wait_until = wait_until

    async def render_many(self, documents: Sequence[str]) -> list[bytes]:
        if not documents:
            return []

        from playwright.async_api import async_playwright

        pdfs: list[bytes] = []
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True, args=self._launch_args)
            try:
                page = await browser.new_page()
                for document in documents:
                    await page.set_content(document, wait_until=self._wait_until)
                    pdfs.append(await page.pdf(format=self._format, print_background=True))
            finally:
                await browser.close()
        logger.info("rendered %s PDF documents", len(pdfs))
        return pdfs


_renderer: DocumentRenderer = PdfRenderer()


def configure_document_renderer(renderer: DocumentRenderer) -> None:
    """Install the renderer used for PoA archives."""

    global _renderer
    _renderer = renderer


def get_document_renderer() -> DocumentRenderer:
    return _renderer


__all__ = [
    "DocumentRenderer",
    "PdfRenderer",
    "configure_document_renderer",
    "fill_template",
    "get_document_renderer",
    "load_template",
]
