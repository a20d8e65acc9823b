"""Result data structures — outcome states, events and the run summary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

from might.errors import (
    MismatchError,
    NavigationError,
    SelectorTimeoutError,
    SessionError,
    SizeMismatchError,
)


class TestState(str, Enum):
    __test__ = False

    QUEUED = "queued"
    RUNNING = "running"
    PASSED = "passed"
    UPDATED = "updated"
    FAILED = "failed"
    SKIPPED = "skipped"


class OutcomeKind(str, Enum):
    OK = "ok"
    NAVIGATION_FAILED = "navigation_failed"
    TIMEOUT = "timeout"
    MISMATCH = "mismatch"
    SIZE_MISMATCH = "size_mismatch"
    CRASHED = "crashed"
    ERROR = "error"


def _kind_for(error: BaseException) -> OutcomeKind:
    if isinstance(error, NavigationError):
        return OutcomeKind.NAVIGATION_FAILED
    if isinstance(error, SelectorTimeoutError):
        return OutcomeKind.TIMEOUT
    if isinstance(error, MismatchError):
        return OutcomeKind.MISMATCH
    if isinstance(error, SizeMismatchError):
        return OutcomeKind.SIZE_MISMATCH
    if isinstance(error, SessionError):
        return OutcomeKind.CRASHED
    return OutcomeKind.ERROR


@dataclass(frozen=True)
class EngineOutcome:
    """Terminal result of one test on one engine."""

    engine: str
    kind: OutcomeKind
    state: TestState
    force: bool = False
    error: Optional[BaseException] = None

    @classmethod
    def passed(cls, engine: str) -> "EngineOutcome":
        return cls(engine=engine, kind=OutcomeKind.OK, state=TestState.PASSED)

    @classmethod
    def updated(cls, engine: str, force: bool = False) -> "EngineOutcome":
        return cls(engine=engine, kind=OutcomeKind.OK, state=TestState.UPDATED, force=force)

    @classmethod
    def failed(cls, engine: str, error: BaseException) -> "EngineOutcome":
        return cls(engine=engine, kind=_kind_for(error), state=TestState.FAILED, error=error)


def merge_states(outcomes: list[EngineOutcome]) -> tuple[TestState, bool]:
    """Collapse per-engine outcomes into the test's state and forced flag."""
    if any(o.state == TestState.FAILED for o in outcomes):
        return TestState.FAILED, False
    if any(o.state == TestState.UPDATED for o in outcomes):
        return TestState.UPDATED, any(o.force for o in outcomes)
    return TestState.PASSED, False


class CoverageFile(BaseModel):
    name: str
    coverage: int
    uncovered_lines: list[int] = Field(default_factory=list)


class CoverageReport(BaseModel):
    overall_pct: int = 0
    files: list[CoverageFile] = Field(default_factory=list)


class RunSummary(BaseModel):
    total: int = 0
    passed: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    forced: int = 0  # subset of `updated` that overwrote a mismatching baseline
    unused_baselines: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0


# === Events ===


@dataclass(frozen=True)
class Started:
    count: int


@dataclass(frozen=True)
class Progress:
    id: int
    title: str
    state: TestState
    force: bool = False
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class Error:
    error: BaseException
    id: Optional[int] = None
    title: Optional[str] = None
    engine: Optional[str] = None

    @property
    def diff(self) -> bytes | None:
        return getattr(self.error, "diff", None)


@dataclass(frozen=True)
class Coverage:
    state: str  # running, done
    report: Optional[CoverageReport] = None


@dataclass(frozen=True)
class Done:
    summary: RunSummary


Event = Union[Started, Progress, Error, Coverage, Done]


@dataclass
class Counters:
    """Run-wide counters, accumulated across repeats."""

    passed: int = 0
    updated: int = 0
    failed: int = 0
    forced: int = 0
    skipped: int = 0

    def record(self, state: TestState, force: bool = False) -> None:
        match state:
            case TestState.PASSED:
                self.passed += 1
            case TestState.UPDATED:
                self.updated += 1
                if force:
                    self.forced += 1
            case TestState.FAILED:
                self.failed += 1
            case TestState.SKIPPED:
                self.skipped += 1

    def summary(self, unused: list[str] | None = None, duration: float = 0.0) -> RunSummary:
        return RunSummary(
            total=self.passed + self.updated + self.failed + self.skipped,
            passed=self.passed,
            updated=self.updated,
            failed=self.failed,
            skipped=self.skipped,
            forced=self.forced,
            unused_baselines=unused or [],
            duration_seconds=round(duration, 2),
        )

