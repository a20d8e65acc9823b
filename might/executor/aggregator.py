"""Aggregator — per-test reduction of engine outcomes and the run's event stream."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Hashable, Optional

from might.models.result import (
    Counters,
    Done,
    EngineOutcome,
    Error,
    Event,
    Progress,
    TestState,
    merge_states,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Event], None]


class EventStream:
    """Unbounded event channel; optionally mirrors every event to a listener."""

    def __init__(self, listener: Optional[Listener] = None):
        self._listener = listener
        self._queue: asyncio.Queue[Event] = asyncio.Queue()

    def emit(self, event: Event) -> None:
        self._queue.put_nowait(event)
        if self._listener is not None:
            self._listener(event)

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, Done):
                return


class TestAggregate:
    """Reducer for one dispatched test across all of its engines."""

    __test__ = False

    def __init__(self, test_id: int, title: str, engines: list[str]):
        self.test_id = test_id
        self.title = title
        self.pending = set(engines)
        self.outcomes: list[EngineOutcome] = []
        self.started = time.monotonic()

    @property
    def complete(self) -> bool:
        return not self.pending

    def record(self, outcome: EngineOutcome) -> Optional[Error]:
        """Add an engine's outcome; returns an error event to flush right away."""
        self.pending.discard(outcome.engine)
        self.outcomes.append(outcome)
        if outcome.state == TestState.FAILED and outcome.error is not None:
            return Error(error=outcome.error, id=self.test_id, title=self.title,
                         engine=outcome.engine)
        return None

    def finalize(self) -> Progress:
        state, force = merge_states(self.outcomes)
        return Progress(
            id=self.test_id,
            title=self.title,
            state=state,
            force=force,
            duration_seconds=round(time.monotonic() - self.started, 2),
        )


class Aggregator:
    """Holds one reducer per in-flight test and the run-wide counters."""

    def __init__(self, stream: EventStream):
        self.stream = stream
        self.counters = Counters()
        self._tests: dict[Hashable, TestAggregate] = {}

    def begin(self, key: Hashable, test_id: int, title: str, engines: list[str]) -> None:
        self._tests[key] = TestAggregate(test_id, title, engines)
        self.stream.emit(Progress(id=test_id, title=title, state=TestState.RUNNING))

    def record(self, key: Hashable, outcome: EngineOutcome) -> None:
        aggregate = self._tests[key]
        error = aggregate.record(outcome)
        if error is not None:
            self.stream.emit(error)
        if aggregate.complete:
            del self._tests[key]
            progress = aggregate.finalize()
            self.counters.record(progress.state, progress.force)
            logger.info("[%s] %s (%.1fs)", progress.state.value.upper(), progress.title,
                        progress.duration_seconds or 0)
            self.stream.emit(progress)

    def skip(self, count: int = 1) -> None:
        for _ in range(count):
            self.counters.record(TestState.SKIPPED)
