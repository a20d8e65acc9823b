"""Screenshot capture — single viewport or stitched full-page PNGs."""

from __future__ import annotations

import io
import logging
import math
from pathlib import Path

from PIL import Image
from playwright.async_api import Page

logger = logging.getLogger(__name__)

_MEASURE_JS = """() => {
    window.scrollTo(0, 0);
    return {
        pageHeight: document.body.clientHeight,
        viewportHeight: window.innerHeight,
        viewportWidth: window.innerWidth,
        pixelRatio: window.devicePixelRatio,
    };
}"""

_PAGE_DOWN_JS = "() => window.scrollBy(0, window.innerHeight)"


def stitch(images: list[Image.Image]) -> Image.Image:
    """Stack images vertically on a transparent canvas as wide as the widest one."""
    width = max(img.width for img in images)
    height = sum(img.height for img in images)
    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    y = 0
    for img in images:
        canvas.paste(img.convert("RGBA"), (0, y))
        y += img.height
    return canvas


def _png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


async def capture(page: Page, full_page: bool = False, path: Path | None = None) -> bytes | None:
    """Capture the page as PNG.

    Writes to ``path`` and returns None when a path is given, otherwise
    returns the PNG bytes. Full-page mode scrolls one viewport at a time and
    stitches the captures, because native full-page capture renders some
    layouts (viewport units) incorrectly on some engines.
    """
    if not full_page:
        return await _single(page, path)

    metrics = await page.evaluate(_MEASURE_JS)
    page_height = metrics["pageHeight"]
    viewport_height = metrics["viewportHeight"]
    ratio = metrics["pixelRatio"] or 1

    pages_count = max(math.ceil(page_height / viewport_height), 1) if viewport_height else 1
    if pages_count == 1:
        return await _single(page, path)

    logger.debug("Full-page capture: %dpx page, %dpx viewport, %d captures",
                 page_height, viewport_height, pages_count)

    images: list[Image.Image] = []
    for i in range(pages_count):
        images.append(Image.open(io.BytesIO(await page.screenshot())))
        if i < pages_count - 1:
            await page.evaluate(_PAGE_DOWN_JS)

    # the final stop only shows the remainder of the page at its bottom edge
    remainder = round((page_height - (pages_count - 1) * viewport_height) * ratio)
    last = images[-1]
    if 0 < remainder < last.height:
        images[-1] = last.crop((0, last.height - remainder, last.width, last.height))

    merged = stitch(images)
    if path is not None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        merged.save(path, format="PNG")
        return None
    return _png_bytes(merged)


async def _single(page: Page, path: Path | None) -> bytes | None:
    if path is not None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(path))
        return None
    return await page.screenshot()
