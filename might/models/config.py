"""Configuration models for the runner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from might.errors import ConfigurationError

SUPPORTED_ENGINES = ("chromium", "firefox", "webkit")

DEFAULT_PAGE_ERROR_IGNORE = [
    "net::ERR_ABORTED",
    "NS_BINDING_ABORTED",
    "access control checks",
    "Load request cancelled",
]

DEFAULT_COVERAGE_EXCLUDE = [
    "/node_modules/**",
    "/webpack/**",
    "/ws '(ignored)'",
    "/'(webpack)'/**",
    "/'(webpack)'-dev-server/**",
]


class ViewportConfig(BaseModel):
    width: int = 1366
    height: int = 768

    @field_validator("width", "height", mode="before")
    @classmethod
    def fallback_size(cls, v, info):
        # null or non-positive sizes mean "use the default"
        if v is None or (isinstance(v, (int, float)) and v <= 0):
            return cls.model_fields[info.field_name].default
        return v


def _positive_or_default(v, default):
    if v is None or (isinstance(v, (int, float)) and v <= 0):
        return default
    return v


class RunOptions(BaseModel):
    """Everything one ``Runner.run()`` invocation needs to know."""

    url: str
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    targets: list[str] = Field(default_factory=lambda: list(SUPPORTED_ENGINES))
    parallel: int = 3
    repeat: int = 1
    step_timeout: int = 25000  # milliseconds
    tolerance: float = 2.5
    antialiasing_tolerance: float = 3.5

    screenshots_dir: Path = Path("__might__")
    coverage_dir: Path = Path("__coverage__")
    title_based_screenshots: bool = False

    update: bool = False
    target: Optional[list[str]] = None  # title filter
    clean: bool = False
    coverage: bool = False
    coverage_exclude: list[str] = Field(default_factory=list)
    page_error_ignore: list[str] = Field(default_factory=list)

    @field_validator("parallel", "repeat", "step_timeout", "tolerance",
                     "antialiasing_tolerance", mode="before")
    @classmethod
    def fallback_numbers(cls, v, info):
        return _positive_or_default(v, cls.model_fields[info.field_name].default)

    @field_validator("target", mode="before")
    @classmethod
    def empty_target_is_none(cls, v):
        if isinstance(v, list) and not v:
            return None
        return v

    @property
    def engines(self) -> list[str]:
        """Configured engines in canonical launch order."""
        return [e for e in SUPPORTED_ENGINES if e in self.targets]


class RunnerConfig(BaseModel):
    """Project configuration persisted as ``might.config.json``."""

    start_command: Optional[str] = None
    url: str
    targets: list[str] = Field(default_factory=lambda: list(SUPPORTED_ENGINES))
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    title_based_screenshots: bool = False
    parallel_tests: int = 3
    default_timeout: int = 25000  # milliseconds
    tolerance: float = 2.5
    antialiasing_tolerance: float = 3.5
    page_error_ignore: list[str] = Field(default_factory=lambda: list(DEFAULT_PAGE_ERROR_IGNORE))
    coverage_exclude: list[str] = Field(default_factory=lambda: list(DEFAULT_COVERAGE_EXCLUDE))

    @field_validator("targets")
    @classmethod
    def require_supported_engine(cls, v: list[str]) -> list[str]:
        if not any(t in SUPPORTED_ENGINES for t in v):
            raise ValueError(
                f"the supported browsers are {list(SUPPORTED_ENGINES)}, got {v}"
            )
        return v

    @classmethod
    def load(cls, path: str | Path) -> "RunnerConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid config {path}: {e}") from e

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)

    def to_run_options(self, **overrides) -> RunOptions:
        """Build run options from this config; ``overrides`` come from the CLI."""
        values = {
            "url": self.url,
            "viewport": self.viewport,
            "targets": self.targets,
            "parallel": self.parallel_tests,
            "step_timeout": self.default_timeout,
            "tolerance": self.tolerance,
            "antialiasing_tolerance": self.antialiasing_tolerance,
            "title_based_screenshots": self.title_based_screenshots,
            "page_error_ignore": self.page_error_ignore,
            "coverage_exclude": self.coverage_exclude,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RunOptions(**values)
