from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..concurrency import with_deadline
from ..errors import UpstreamServiceError
from ..log import get_logger

logger = get_logger(__name__)

SERVICE = "renderer"


async def _render(url: str, token: str, timeout: float) -> bytes:
    host = urlparse(url).hostname or "localhost"
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=True)
        try:
            context = await browser.new_context()
            await context.add_cookies([{"name": "token", "value": token, "domain": host, "path": "/"}])
            page = await context.new_page()
            await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
            return await page.pdf(
                format="A4",
                print_background=True,
                display_header_footer=True,
                header_template="<div></div>",
                footer_template="<div></div>",
                margin={"bottom": "50px"},
            )
        finally:
            await browser.close()


async def render_page_to_pdf(url: str, token: str, timeout: float) -> bytes:
    """Render an authenticated page to an A4 PDF within ``timeout`` seconds."""
    try:
        pdf = await with_deadline(_render(url, token, timeout), timeout, SERVICE)
    except PlaywrightError as exc:
        raise UpstreamServiceError(f"rendering {url} failed: {exc}", service=SERVICE) from exc
    logger.info("rendered page", url=url, size=len(pdf))
    return pdf
