"""Error taxonomy shared by the runner, the step interpreter and the diff engine."""

from __future__ import annotations


class MightError(Exception):
    """Base class for every error raised by the runner."""


class ConfigurationError(MightError):
    """Config or map could not be loaded; aborts the run before any browser starts."""


class StepError(MightError):
    """A step could not be carried out."""


class NavigationError(StepError):
    """Navigation failed (after retries, for the initial page load)."""


class SelectorTimeoutError(StepError):
    """An element did not appear within the step timeout."""


class MissingElementError(StepError):
    """An action that needs an element found none."""


class SessionError(MightError):
    """Unrecoverable failure reported by the browser session itself."""


class SessionCrashError(SessionError):
    pass


class PageScriptError(SessionError):
    pass


class RequestFailedError(SessionError):
    pass


class SizeMismatchError(MightError):
    """Baseline and current screenshots have different dimensions."""

    def __init__(self, reference_size: tuple[int, int], current_size: tuple[int, int]):
        self.reference_size = reference_size
        self.current_size = current_size
        super().__init__(
            "Screenshots have different sizes "
            f"({reference_size[0]}x{reference_size[1]}) ({current_size[0]}x{current_size[1]})"
        )


class MismatchError(MightError):
    """The current screenshot differs from its baseline.

    ``diff`` holds the composite PNG produced by the diff engine so the caller
    can decide where (and whether) to persist it.
    """

    def __init__(self, message: str, diff: bytes | None = None):
        super().__init__(message)
        self.diff = diff
