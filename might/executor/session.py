"""Browser sessions — engine processes and deterministic per-test contexts."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright.async_api import Error as PlaywrightError

from might.coverage.collector import CoverageCollector
from might.errors import (
    NavigationError,
    PageScriptError,
    RequestFailedError,
    SessionCrashError,
    SessionError,
)
from might.executor.steps import ViewportDescriptor
from might.models.config import RunOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

LAUNCH_TIMEOUT_MS = 15000
NAVIGATION_RETRY_DELAY = 1.0  # seconds

LOCALE = "en-US"
TIMEZONE = "America/Los_Angeles"

# Pin the apparent client so IP/geolocation based UI doesn't vary between machines.
DETERMINISM_HEADERS = {
    "X-Forwarded-For": "8.8.8.8",
    "Accept-Language": "en-US,en;q=0.5",
}

_LAUNCH_ARGS = {
    "chromium": [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        # because of CORS rejections
        "--disable-web-security",
    ],
}


class ViewportChange(str, Enum):
    RECREATE = "recreate"
    RESIZE = "resize"


def viewport_transition(current_touch: bool, descriptor: ViewportDescriptor) -> ViewportChange:
    """Decide how a viewport step is applied to a live session.

    Touch emulation can't be toggled on an existing context, so a touch
    change needs a new context; anything else is a resize in place.
    """
    if descriptor.touch != current_touch:
        return ViewportChange.RECREATE
    return ViewportChange.RESIZE


async def launch_engine(playwright: Playwright, engine: str) -> Browser:
    """Launch one browser engine process."""
    logger.debug("Launching %s...", engine)
    browser_type = getattr(playwright, engine)
    return await browser_type.launch(
        timeout=LAUNCH_TIMEOUT_MS,
        args=_LAUNCH_ARGS.get(engine, []),
    )


async def retry(
    fn: Callable[[], Awaitable[T]], delay: float, deadline: float,
) -> T:
    """Call ``fn`` until it succeeds, sleeping ``delay`` seconds between attempts.

    Gives up once ``deadline`` seconds have passed, re-raising the last error.
    """
    give_up_at = time.monotonic() + deadline
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except PlaywrightError as e:
            if time.monotonic() >= give_up_at:
                raise
            logger.debug("Attempt %d failed (%s), retrying in %.1fs", attempt, e, delay)
            await asyncio.sleep(delay)


async def create_context(
    browser: Browser, viewport: dict, touch: bool = False,
) -> BrowserContext:
    """Create an isolated context with every determinism measure applied."""
    return await browser.new_context(
        viewport=viewport,
        has_touch=touch,
        color_scheme="light",
        locale=LOCALE,
        timezone_id=TIMEZONE,
        extra_http_headers=DETERMINISM_HEADERS,
    )


class EngineSession:
    """One test execution's browsing session on one engine.

    Owns the context and page, records unrecoverable page errors through
    session hooks and, for chromium with coverage enabled, collects raw
    JS coverage across context recreations.
    """

    def __init__(self, browser: Browser, engine: str, options: RunOptions):
        self.browser = browser
        self.engine = engine
        self.options = options
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.touch = False
        self.error: Optional[SessionError] = None
        self.coverage_entries: list[dict] = []
        self._collector: Optional[CoverageCollector] = None

    @property
    def collects_coverage(self) -> bool:
        return self.options.coverage and self.engine == "chromium"

    async def open(self, width: int | None = None, height: int | None = None) -> Page:
        """Open a fresh context + page and load the base URL (with retries)."""
        viewport = {
            "width": width or self.options.viewport.width,
            "height": height or self.options.viewport.height,
        }
        self.context = await create_context(self.browser, viewport, touch=self.touch)
        self.page = await self.context.new_page()
        self._attach_listeners(self.page)

        if self.collects_coverage:
            self._collector = CoverageCollector(self.context, self.page)
            await self._collector.start()

        timeout = self.options.step_timeout
        try:
            await retry(
                lambda: self.page.goto(self.options.url, timeout=timeout),
                NAVIGATION_RETRY_DELAY,
                timeout / 1000,
            )
        except PlaywrightError as e:
            raise NavigationError(f"Unable to load {self.options.url}: {e}") from e
        return self.page

    def _attach_listeners(self, page: Page) -> None:
        page.on("crash", lambda _: self.record_error(SessionCrashError("Page crashed")))
        page.on("pageerror", lambda exc: self.record_error(PageScriptError(str(exc))))
        page.on("requestfailed", lambda req: self.record_error(RequestFailedError(
            f"{req.method} {req.url} {req.failure}"
        )))

    def record_error(self, error: SessionError) -> None:
        message = str(error)
        if any(pattern in message for pattern in self.options.page_error_ignore):
            logger.debug("[%s] Ignoring page error: %s", self.engine, message)
            return
        if isinstance(error, SessionCrashError):
            logger.warning("[%s] Page crashed; pages may crash when they allocate too much memory",
                           self.engine)
        if self.error is None:
            self.error = error

    def raise_for_error(self) -> None:
        """Surface the first recorded session error as the execution's failure."""
        if self.error is not None:
            raise self.error

    async def apply_viewport(self, descriptor: ViewportDescriptor) -> None:
        change = viewport_transition(self.touch, descriptor)
        logger.debug("[%s] Viewport %dx%d touch=%s -> %s", self.engine,
                     descriptor.width, descriptor.height, descriptor.touch, change.value)
        if change is ViewportChange.RECREATE:
            self.touch = descriptor.touch
            await self._teardown()
            await self.open(descriptor.width, descriptor.height)
        else:
            await self.page.set_viewport_size(
                {"width": descriptor.width, "height": descriptor.height}
            )

    async def _teardown(self) -> None:
        if self._collector is not None:
            try:
                self.coverage_entries.extend(await self._collector.stop())
            except PlaywrightError as e:
                logger.warning("[%s] Could not collect coverage: %s", self.engine, e)
            self._collector = None
        context, self.context, self.page = self.context, None, None
        if context is not None:
            await context.close()

    async def close(self) -> None:
        try:
            await self._teardown()
        except PlaywrightError as e:
            logger.debug("[%s] Error closing context: %s", self.engine, e)
