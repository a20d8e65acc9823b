"""Coverage processor — turns raw V8 coverage entries into line coverage."""

from __future__ import annotations

import json
import logging
import math
import shutil
from fnmatch import fnmatch
from pathlib import Path

from might.models.result import CoverageFile, CoverageReport
from might.url_utils import url_path

logger = logging.getLogger(__name__)


def is_excluded(path: str, exclude: list[str]) -> bool:
    return any(fnmatch(path, pattern) for pattern in exclude)


def _line_spans(source: str) -> list[tuple[int, int]]:
    """(start, end) character offsets of every line in ``source``."""
    spans = []
    start = 0
    for line in source.splitlines(keepends=True):
        spans.append((start, start + len(line)))
        start += len(line)
    return spans


def _offset_counts(source: str, functions: list[dict]) -> list[int]:
    """Execution count for every character offset.

    V8 block ranges nest: an inner range overrides the count of its
    enclosing range, so ranges are applied outermost first.
    """
    counts = [0] * len(source)
    ranges = [r for fn in functions for r in fn.get("ranges", [])]
    ranges.sort(key=lambda r: r["endOffset"] - r["startOffset"], reverse=True)
    for r in ranges:
        start = max(r["startOffset"], 0)
        end = min(r["endOffset"], len(source))
        counts[start:end] = [r["count"]] * max(end - start, 0)
    return counts


def covered_lines(source: str, functions: list[dict]) -> tuple[set[int], set[int]]:
    """Return (all code lines, covered lines), 1-based; blank lines are ignored."""
    counts = _offset_counts(source, functions)
    lines: set[int] = set()
    covered: set[int] = set()
    for number, (start, end) in enumerate(_line_spans(source), start=1):
        offsets = [i for i in range(start, end) if not source[i].isspace()]
        if not offsets:
            continue
        lines.add(number)
        if any(counts[i] > 0 for i in offsets):
            covered.add(number)
    return lines, covered


def process(entries: list[dict], output_dir: Path, exclude: list[str]) -> CoverageReport:
    """Merge coverage entries per script path and write ``coverage.json``."""
    files: dict[str, tuple[set[int], set[int]]] = {}

    for entry in entries:
        path = url_path(entry.get("url", ""))
        if not path or is_excluded(path, exclude):
            continue
        lines, covered = covered_lines(entry.get("source") or "", entry.get("functions", []))
        known_lines, known_covered = files.setdefault(path, (set(), set()))
        known_lines.update(lines)
        known_covered.update(covered)

    total_lines = 0
    total_covered = 0
    report_files = []
    for path in sorted(files):
        lines, covered = files[path]
        total_lines += len(lines)
        total_covered += len(covered)
        pct = math.floor(len(covered) / len(lines) * 100) if lines else 100
        report_files.append(CoverageFile(
            name=path, coverage=pct, uncovered_lines=sorted(lines - covered),
        ))

    overall = math.floor(total_covered / total_lines * 100) if total_lines else 100
    report = CoverageReport(overall_pct=overall, files=report_files)

    if output_dir.exists():
        shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True)
    with open(output_dir / "coverage.json", "w") as f:
        json.dump(report.model_dump(), f, indent=2)
    logger.info("Coverage: %d%% across %d file(s)", overall, len(report_files))
    return report
