"""Test runner — runs a test map on every target engine using Playwright."""

from __future__ import annotations

import asyncio
import io
import logging
import time
from typing import Optional

from PIL import Image
from playwright.async_api import Browser, async_playwright
from playwright.async_api import Error as PlaywrightError

from might.coverage.processor import process as process_coverage
from might.errors import (
    ConfigurationError,
    MightError,
    MismatchError,
    SizeMismatchError,
    StepError,
)
from might.executor.aggregator import Aggregator, EventStream, Listener
from might.executor.screenshot import capture
from might.executor.session import EngineSession, launch_engine
from might.executor.steps import StepState, ViewportDescriptor, run_step
from might.models.config import RunOptions
from might.models.result import (
    Coverage,
    Done,
    EngineOutcome,
    Error,
    RunSummary,
    Started,
)
from might.models.test_map import TestCase
from might.visual.baselines import BaselineStore, screenshot_identity
from might.visual.diff import compare

logger = logging.getLogger(__name__)


class Runner:
    """Runs a test map against every configured engine.

    Each test runs once per engine, in parallel, each in its own isolated
    browser context; at most ``options.parallel`` tests are in flight.
    """

    def __init__(self, options: RunOptions, tests: Optional[list[TestCase]]):
        self.options = options
        self.tests = tests

    async def run(self, on_event: Optional[Listener] = None,
                  stream: Optional[EventStream] = None) -> RunSummary:
        """Execute the map and return the run summary.

        Events are emitted to ``stream`` (created if not given), which also
        forwards them to ``on_event``.
        """
        stream = stream or EventStream(on_event)
        start_time = time.time()
        options = self.options

        if self.tests is None:
            error = ConfigurationError("Unable to load map file")
            stream.emit(Error(error=error))
            summary = RunSummary()
            stream.emit(Done(summary))
            return summary

        aggregator = Aggregator(stream)
        tests = self._select_tests(aggregator)

        if not tests:
            summary = aggregator.counters.summary(duration=time.time() - start_time)
            stream.emit(Done(summary))
            return summary

        baselines = BaselineStore(options.screenshots_dir)
        baselines.scan()
        coverage_entries: list[dict] = []
        engines = options.engines

        async with async_playwright() as p:
            browsers: dict[str, Browser] = {}
            try:
                for engine in engines:
                    browsers[engine] = await launch_engine(p, engine)

                stream.emit(Started(len(tests)))
                logger.info("Running %d test(s) on %s (parallel=%d, repeat=%d)",
                            len(tests), ", ".join(engines), options.parallel, options.repeat)

                semaphore = asyncio.Semaphore(options.parallel)

                async def _run_one(key: tuple[int, int], index: int, test: TestCase) -> None:
                    async with semaphore:
                        await self._run_test(
                            key, index, test, browsers, aggregator, baselines, coverage_entries,
                        )

                for round_ in range(options.repeat):
                    await asyncio.gather(*(
                        _run_one((round_, i), i, t) for i, t in enumerate(tests)
                    ))
            finally:
                await asyncio.gather(
                    *(browser.close() for browser in browsers.values()),
                    return_exceptions=True,
                )

        if options.coverage:
            stream.emit(Coverage(state="running"))
            report = process_coverage(coverage_entries, options.coverage_dir,
                                      options.coverage_exclude)
            stream.emit(Coverage(state="done", report=report))

        # a filtered run says nothing about the baselines of the tests it skipped
        unused: list[str] = []
        if not options.target:
            unused = [str(p) for p in baselines.unused()]
            if options.clean:
                baselines.clean()

        summary = aggregator.counters.summary(unused=unused, duration=time.time() - start_time)
        logger.info(
            "Run complete: %d passed, %d updated, %d failed, %d skipped (%.1fs)",
            summary.passed, summary.updated, summary.failed, summary.skipped,
            summary.duration_seconds,
        )
        stream.emit(Done(summary))
        return summary

    def _select_tests(self, aggregator: Aggregator) -> list[TestCase]:
        """Drop tests with no steps and tests outside the title filter."""
        selected = []
        for test in self.tests:
            if not test.steps:
                logger.warning("Skipping test without steps: %s", test.title or "<untitled>")
                aggregator.skip()
            elif self.options.target and test.title not in self.options.target:
                aggregator.skip()
            else:
                selected.append(test)
        return selected

    async def _run_test(
        self,
        key: tuple[int, int],
        index: int,
        test: TestCase,
        browsers: dict[str, Browser],
        aggregator: Aggregator,
        baselines: BaselineStore,
        coverage_entries: list[dict],
    ) -> None:
        title = test.display_name(self.options.url)
        identity = screenshot_identity(test, self.options.title_based_screenshots)
        aggregator.begin(key, index, title, list(browsers))
        for engine in browsers:
            baselines.mark_used(baselines.path_for(identity, engine))

        async def _engine(engine: str, browser: Browser) -> None:
            outcome = await self._execute(browser, engine, test, identity, baselines,
                                          coverage_entries)
            aggregator.record(key, outcome)

        await asyncio.gather(*(_engine(e, b) for e, b in browsers.items()))

    async def _execute(
        self,
        browser: Browser,
        engine: str,
        test: TestCase,
        identity: str,
        baselines: BaselineStore,
        coverage_entries: list[dict],
    ) -> EngineOutcome:
        """Run one test on one engine; every failure ends up in the outcome."""
        options = self.options
        session = EngineSession(browser, engine, options)
        try:
            await session.open()
            state = StepState(width=options.viewport.width, height=options.viewport.height)

            for step in test.steps:
                delta = await run_step(session.page, step, state, options)
                if isinstance(delta, ViewportDescriptor):
                    await session.apply_viewport(delta)
                    state.width, state.height = delta.width, delta.height
                    state.touch = delta.touch
                    state.full_page = delta.full
                elif delta is not None:
                    state.selector = delta

            session.raise_for_error()
            return await self._settle(session, engine, identity, state.full_page, baselines)

        except MightError as e:
            logger.debug("[%s] %s failed: %s", engine, test.title or identity, e)
            return EngineOutcome.failed(engine, e)
        except PlaywrightError as e:
            logger.warning("[%s] %s: %s", engine, test.title or identity, e)
            return EngineOutcome.failed(engine, session.error or StepError(str(e)))
        except Exception as e:
            logger.exception("[%s] %s: unexpected error", engine, test.title or identity)
            return EngineOutcome.failed(engine, StepError(f"{type(e).__name__}: {e}"))
        finally:
            await session.close()
            coverage_entries.extend(session.coverage_entries)

    async def _settle(
        self,
        session: EngineSession,
        engine: str,
        identity: str,
        full_page: bool,
        baselines: BaselineStore,
    ) -> EngineOutcome:
        """Compare against (or create) the baseline and decide the outcome."""
        options = self.options
        page = session.page
        path = baselines.path_for(identity, engine)

        async def _update(force: bool = False) -> EngineOutcome:
            await capture(page, full_page, path=path)
            logger.debug("[%s] %s baseline %s", engine,
                         "Overwrote" if force else "Created", path.name)
            return EngineOutcome.updated(engine, force=force)

        if not path.exists():
            return await _update()

        if options.target and options.update:
            return await _update(force=True)

        data = await capture(page, full_page)
        try:
            with Image.open(io.BytesIO(data)) as current, Image.open(path) as reference:
                result = compare(reference, current, options.tolerance,
                                 options.antialiasing_tolerance)
        except SizeMismatchError:
            if options.update:
                return await _update(force=True)
            raise

        if result.same:
            return EngineOutcome.passed(engine)

        if options.update:
            return await _update(force=True)

        raise MismatchError(
            f"Found {result.differences} different pixel(s) on {engine}",
            result.diff_image,
        )
