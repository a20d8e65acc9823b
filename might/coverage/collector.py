"""Raw JS coverage collection over the Chrome DevTools Protocol (chromium only)."""

from __future__ import annotations

import logging

from playwright.async_api import BrowserContext, CDPSession, Page

logger = logging.getLogger(__name__)


class CoverageCollector:
    """Collects V8 precise coverage for one page."""

    def __init__(self, context: BrowserContext, page: Page):
        self.context = context
        self.page = page
        self._session: CDPSession | None = None

    async def start(self) -> None:
        self._session = await self.context.new_cdp_session(self.page)
        await self._session.send("Debugger.enable")
        await self._session.send("Profiler.enable")
        await self._session.send(
            "Profiler.startPreciseCoverage", {"callCount": True, "detailed": True}
        )

    async def stop(self) -> list[dict]:
        """Take the coverage collected so far, with each script's source attached."""
        if self._session is None:
            return []
        session, self._session = self._session, None
        taken = await session.send("Profiler.takePreciseCoverage")
        entries = []
        for script in taken.get("result", []):
            url = script.get("url") or ""
            if not url.startswith(("http://", "https://")):
                continue
            source = await session.send(
                "Debugger.getScriptSource", {"scriptId": script["scriptId"]}
            )
            entries.append({
                "url": url,
                "scriptId": script["scriptId"],
                "source": source.get("scriptSource", ""),
                "functions": script.get("functions", []),
            })
        await session.send("Profiler.stopPreciseCoverage")
        await session.detach()
        logger.debug("Collected coverage for %d script(s)", len(entries))
        return entries
