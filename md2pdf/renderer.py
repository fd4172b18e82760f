"""
HTML to PDF rendering through headless Chromium (Playwright).

Each render launches its own browser, loads the document, waits for images,
diagrams and math to settle, then prints it with a date header and a page
number footer.
"""

import asyncio
import html as html_lib
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import RenderConfiguration, margin_to_cm
from .console import ConsoleLogger
from .errors import RenderError, RenderSessionClosedError, RenderTimeoutError

SETTLE_DELAY_MS = 500
IMAGE_WAIT_MS = 5000

_WAIT_FOR_IMAGES_JS = """
(perImageTimeout) => {
  const pending = [];
  const track = (el) => {
    if (el.complete) return;
    pending.push(new Promise((resolve) => {
      el.addEventListener('load', resolve, { once: true });
      el.addEventListener('error', resolve, { once: true });
      setTimeout(resolve, perImageTimeout);
    }));
  };
  document.querySelectorAll('img').forEach(track);
  document.querySelectorAll('svg image').forEach(track);
  return Promise.all(pending).then(() => pending.length);
}
"""

_TYPESET_JS = """
async () => {
  const problems = [];
  if (window.mermaid) {
    const pending = document.querySelectorAll('.mermaid:not([data-processed])');
    if (pending.length > 0) {
      try {
        await mermaid.run({ nodes: pending });
      } catch (e) {
        problems.push('Mermaid: ' + (e && e.message ? e.message : e));
      }
    }
  }
  if (window.MathJax && MathJax.typesetPromise) {
    try {
      await MathJax.typesetPromise();
    } catch (e) {
      problems.push('MathJax: ' + (e && e.message ? e.message : e));
    }
  }
  return problems;
}
"""

_HEADER_FOOTER_FONT = (
    "font-family:-apple-system, BlinkMacSystemFont, 'Noto Sans', 'Helvetica Neue', Arial, sans-serif;"
)


def build_header_template(date_label: str) -> str:
    return (
        f'<div style="font-size:12px; {_HEADER_FOOTER_FONT} text-align:left; width:100%; margin-left:10mm;">'
        f'{html_lib.escape(date_label)}</div>'
    )


def build_footer_template(footer_text: str) -> str:
    return (
        f'<div style="font-size:12px; {_HEADER_FOOTER_FONT} width:100%; display:flex; '
        f'justify-content:space-between; align-items:center; margin:0 10mm;">'
        f'<div>{html_lib.escape(footer_text)}</div>'
        f'<div><span class="pageNumber"></span>/<span class="totalPages"></span></div>'
        f'</div>'
    )


class RenderDriver:
    """Drives one headless Chromium session per PDF."""

    def __init__(self, config: RenderConfiguration, logger: Optional[ConsoleLogger] = None):
        self.config = config
        self.logger = logger or ConsoleLogger(config.verbose)
        self._playwright = None
        self._browser = None
        self._page = None
        self._page_closed = False

    async def _launch_browser(self) -> None:
        """Launch a fresh Chromium browser instance."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                '--disable-dev-shm-usage',  # Use /tmp instead of /dev/shm
                '--disable-gpu',
                '--no-sandbox',
            ]
        )

    async def _close_browser(self) -> None:
        """Close page, browser and Playwright. Failures here are ignored."""
        # Null references first so a crash mid-cleanup cannot double-close
        page, browser, pw = self._page, self._browser, self._playwright
        self._page = None
        self._browser = None
        self._playwright = None

        try:
            if page and not self._page_closed and not page.is_closed():
                await page.close()
        except Exception:
            pass
        try:
            if browser and browser.is_connected():
                await browser.close()
        except Exception:
            pass
        try:
            if pw:
                await pw.stop()
        except Exception:
            pass

        self.logger.debug("Browser instance closed and cleaned up")

    def _on_page_close(self, *_args) -> None:
        self._page_closed = True

    def _on_page_error(self, error) -> None:
        self.logger.warning(f"Page error: {error}")

    def _is_closed(self) -> bool:
        return self._page is None or self._page_closed or self._page.is_closed()

    def _ensure_open(self, stage: str) -> None:
        if self._is_closed():
            raise RenderSessionClosedError(stage)

    async def _load(self, html: Optional[str], html_path: Optional[Path]) -> None:
        page = self._page
        timeout = self.config.load_timeout_ms
        try:
            if html_path is not None:
                await page.goto(Path(html_path).resolve().as_uri(), wait_until="load", timeout=timeout)
            else:
                size_mb = len(html) / 1024 / 1024
                if size_mb > 10:
                    self.logger.warning(f"Large HTML document: {size_mb:.2f}MB")
                await page.set_content(html, wait_until="load", timeout=timeout)
        except PlaywrightTimeoutError as e:
            self._ensure_open("loading HTML")
            raise RenderTimeoutError(f"Timed out loading HTML after {timeout}ms: {e}")
        except PlaywrightError as e:
            self._ensure_open("loading HTML")
            raise RenderError(f"Failed to load HTML: {e}")

    async def _wait_ready(self) -> None:
        timeout = self.config.ready_timeout_ms
        try:
            await self._page.wait_for_function("document.readyState === 'complete'", timeout=timeout)
        except PlaywrightTimeoutError as e:
            self._ensure_open("waiting for DOM")
            raise RenderTimeoutError(f"Document did not become ready within {timeout}ms: {e}")
        except PlaywrightError as e:
            self._ensure_open("waiting for DOM")
            raise RenderError(f"Failed while waiting for DOM: {e}")

    async def _wait_images(self) -> None:
        try:
            count = await self._page.evaluate(_WAIT_FOR_IMAGES_JS, IMAGE_WAIT_MS)
            if count:
                self.logger.debug(f"Waited for {count} image(s) to load")
        except PlaywrightError as e:
            self._ensure_open("waiting for images")
            self.logger.warning(f"Image loading check failed, continuing: {e}")

    async def _typeset(self) -> None:
        timeout_s = self.config.typeset_timeout_ms / 1000
        try:
            problems = await asyncio.wait_for(self._page.evaluate(_TYPESET_JS), timeout=timeout_s)
        except asyncio.TimeoutError:
            self._ensure_open("rendering diagrams and math")
            raise RenderTimeoutError(f"Diagram and math rendering did not finish within {timeout_s:g}s")
        except PlaywrightError as e:
            self._ensure_open("rendering diagrams and math")
            self.logger.warning(f"Diagram/math rendering failed, continuing: {e}")
            return
        for problem in problems or []:
            self.logger.warning(f"Render problem: {problem}")

    async def _print_pdf(self, output_pdf: Path, date_label: str) -> None:
        cfg = self.config
        margins = {side: f"{margin_to_cm(value)}cm" for side, value in cfg.margins.items()}
        self.logger.debug(f"Printing PDF ({cfg.pdf_format}, scale {cfg.pdf_scale}) with margins: {margins}")
        try:
            await self._page.pdf(
                path=str(output_pdf),
                format=cfg.pdf_format,
                scale=cfg.pdf_scale,
                print_background=cfg.print_background,
                margin=margins,
                display_header_footer=True,
                header_template=build_header_template(date_label),
                footer_template=build_footer_template(cfg.footer_text),
                timeout=cfg.pdf_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            self._ensure_open("generating PDF")
            raise RenderTimeoutError(f"PDF generation timed out after {cfg.pdf_timeout_ms}ms: {e}")
        except PlaywrightError as e:
            self._ensure_open("generating PDF")
            raise RenderError(f"Failed to generate PDF: {e}")

    async def render_pdf(self, output_pdf: Path, date_label: str, html: Optional[str] = None,
                         html_path: Optional[Path] = None) -> Path:
        """Render a full HTML document (inline or from a file) to output_pdf."""
        if html is None and html_path is None:
            raise RenderError("Either HTML content or an HTML file path is required")

        output_pdf = Path(output_pdf)
        output_pdf.parent.mkdir(parents=True, exist_ok=True)
        self._page_closed = False

        try:
            await self._launch_browser()
            self._page = await self._browser.new_page()
            self._page.on("close", self._on_page_close)
            self._page.on("pageerror", self._on_page_error)

            await self._load(html, html_path)
            self._ensure_open("after loading HTML")

            await self._wait_ready()
            self._ensure_open("after DOM ready")

            await self._wait_images()
            self._ensure_open("after loading images")

            await self._typeset()
            self._ensure_open("after rendering diagrams and math")

            await self._page.wait_for_timeout(SETTLE_DELAY_MS)
            self._ensure_open("before generating PDF")

            await self._print_pdf(output_pdf, date_label)
        except PlaywrightError as e:
            # Anything not already mapped, e.g. a browser that failed to launch
            if self._page is not None and self._is_closed():
                raise RenderSessionClosedError("rendering")
            raise RenderError(f"Browser error: {e}", [
                "Install the browser with: playwright install chromium",
            ])
        finally:
            await self._close_browser()

        return output_pdf
