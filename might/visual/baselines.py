"""Baseline store — screenshot identities, baseline paths and unused-baseline tracking."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from might.models.test_map import TestCase, steps_to_string

logger = logging.getLogger(__name__)

_ILLEGAL_RE = re.compile(r'[/\?<>\\:\*\|"]')
_CONTROL_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_RE = re.compile(r"^\.+$")
_WINDOWS_RESERVED_RE = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_TRAILING_RE = re.compile(r"[\. ]+$")


def sanitize_filename(name: str) -> str:
    """Strip characters that aren't safe in a filename on any common OS."""
    name = _ILLEGAL_RE.sub("", name)
    name = _CONTROL_RE.sub("", name)
    name = _RESERVED_RE.sub("", name)
    name = _WINDOWS_RESERVED_RE.sub("", name)
    name = _TRAILING_RE.sub("", name)
    return name.encode("utf-8")[:255].decode("utf-8", errors="ignore")


def screenshot_identity(test: TestCase, title_based: bool = False) -> str:
    """Deterministic baseline key for a test.

    By default the md5 of the canonical step rendering: identical steps share
    a baseline and any step change produces a new one. With ``title_based``
    (and a title present) the sanitized title is used instead, which is
    easier to browse but has to be updated whenever the steps change.
    """
    if title_based and test.title:
        sanitized = sanitize_filename(test.title)
        if sanitized:
            return sanitized
    return hashlib.md5(steps_to_string(test.steps).encode("utf-8")).hexdigest()


class BaselineStore:
    """Baseline files of one run, plus which of them the run has touched.

    Created per run so concurrent or consecutive runs in one process never
    share their "seen" table.
    """

    def __init__(self, screenshots_dir: Path):
        self.screenshots_dir = Path(screenshots_dir)
        self._unused: dict[Path, bool] = {}

    def scan(self) -> int:
        """Record every baseline currently on disk as unused; return how many."""
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        self._unused = {
            p: True for p in sorted(self.screenshots_dir.iterdir())
            if p.is_file() and p.suffix == ".png"
        }
        logger.debug("Found %d baseline(s) in %s", len(self._unused), self.screenshots_dir)
        return len(self._unused)

    def path_for(self, identity: str, engine: str) -> Path:
        return self.screenshots_dir / f"{identity}.{engine}.png"

    def mark_used(self, path: Path) -> None:
        self._unused[Path(path)] = False

    def unused(self) -> list[Path]:
        return [p for p, unused in self._unused.items() if unused]

    def clean(self) -> list[Path]:
        """Delete every unused baseline and return the removed paths."""
        removed = []
        for path in self.unused():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            self._unused.pop(path, None)
            removed.append(path)
        logger.info("Removed %d unused baseline(s)", len(removed))
        return removed
