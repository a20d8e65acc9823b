"""CLI entry point for the visual regression runner."""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from might.errors import ConfigurationError
from might.models.config import SUPPORTED_ENGINES, RunnerConfig
from might.models.result import (
    Coverage,
    CoverageReport,
    Done,
    Error,
    Event,
    Progress,
    RunSummary,
    Started,
    TestState,
)
from might.models.test_map import steps_to_string
from might.orchestrator import DEFAULT_CONFIG_PATH, DEFAULT_MAP_PATH, Orchestrator
from might.visual.baselines import sanitize_filename

console = Console()

_TARGET_SPLIT_RE = re.compile(r"(?<!\\),")

_STATE_STYLES = {
    TestState.RUNNING: "bold bright_blue",
    TestState.PASSED: "bold green",
    TestState.UPDATED: "bold yellow",
    TestState.FAILED: "bold red",
}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def parse_targets(value: Optional[str]) -> Optional[list[str]]:
    """Split a comma separated title list; ``\\,`` keeps a literal comma."""
    if not value:
        return None
    titles = [t.replace("\\,", ",").strip() for t in _TARGET_SPLIT_RE.split(value)]
    return [t for t in titles if t] or None


def _coverage_color(pct: int) -> str:
    if pct >= 90:
        return "green"
    if pct >= 70:
        return "yellow"
    return "red"


class RunReporter:
    """Prints run events as they arrive."""

    def __init__(self, targeted: bool = False, diff_dir: Path = Path(".")):
        self.targeted = targeted
        self.diff_dir = diff_dir
        self.errors = 0
        self.diff_files: list[Path] = []
        self.summary: Optional[RunSummary] = None

    def __call__(self, event: Event) -> None:
        match event:
            case Started(count=count):
                console.print(f"[bold]Running {count} test(s)[/bold]\n")
            case Progress():
                self._progress(event)
            case Error():
                self._error(event)
            case Coverage(state="running"):
                console.print("\n[bold bright_blue]Generating Coverage Report...[/bold bright_blue]")
            case Coverage(state="done", report=report):
                self._coverage(report)
            case Done(summary=summary):
                self.summary = summary

    def _progress(self, event: Progress) -> None:
        style = _STATE_STYLES.get(event.state, "bold")
        label = event.state.value.upper()
        if event.state == TestState.UPDATED:
            if not event.force:
                label += " (NEW)"
            else:
                label += " (FORCED)" if self.targeted else " (FAILED)"
        if event.duration_seconds is not None:
            label += f" ({event.duration_seconds:.1f}s)"
        console.print(f"[{style}]{label}[/{style}] {escape(event.title)}")

    def _error(self, event: Error) -> None:
        self.errors += 1
        where = ""
        if event.title:
            where = escape(event.title)
            if event.engine:
                where += f" ({event.engine})"
            where += ": "
        console.print(f"[red]{where}{escape(str(event.error))}[/red]")
        if event.diff:
            stamp = datetime.now(timezone.utc).isoformat()
            path = self.diff_dir / sanitize_filename(f"might.error.{stamp}.png")
            path.write_bytes(event.diff)
            self.diff_files.append(path)
            console.print(f"  [yellow]Diff Image:[/yellow] [blue]{path}[/blue]")

    def _coverage(self, report: Optional[CoverageReport]) -> None:
        if report is None or not report.files:
            return
        table = Table(title="Coverage")
        table.add_column("File", style="bold")
        table.add_column("Cov", justify="right")
        table.add_column("Uncovered")
        for f in report.files:
            color = _coverage_color(f.coverage)
            lines = ", ".join(str(n) for n in f.uncovered_lines[:3])
            if len(f.uncovered_lines) > 3:
                lines += "..."
            table.add_row(escape(f.name), f"[{color}]{f.coverage}%[/{color}]", f"[red]{lines}[/red]")
        console.print(table)
        color = _coverage_color(report.overall_pct)
        console.print(f"Total Coverage is [bold {color}]{report.overall_pct}%[/bold {color}]")


def print_summary(summary: RunSummary, targeted: bool, clean: bool, update: bool) -> None:
    if summary.total == 0:
        console.print("[bold yellow]Map has no tests.[/bold yellow]")
        return
    if summary.total == summary.skipped:
        console.print("[bold magenta]All tests were skipped.[/bold magenta]")
        return

    title = "Summary"
    if update and targeted:
        title += " (all targeted tests were updated)"
    elif update:
        title += " (all failed tests were updated)"

    console.print()
    table = Table(title=title)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Passed", f"[green]{summary.passed}[/green]")
    table.add_row("Updated", f"[yellow]{summary.updated}[/yellow]")
    if summary.forced:
        table.add_row("  Forced", f"[yellow]{summary.forced}[/yellow]")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    table.add_row("Skipped", f"[magenta]{summary.skipped}[/magenta]")
    table.add_row("Total", str(summary.total))
    table.add_row("Duration", f"{summary.duration_seconds}s")
    console.print(table)

    unused = len(summary.unused_baselines)
    if not targeted and unused:
        plural = "screenshots" if unused > 1 else "screenshot"
        if clean:
            console.print(f"\n[bold yellow]Deleted {unused} unused {plural}.[/bold yellow]")
        else:
            pronoun = "them" if unused > 1 else "it"
            console.print(
                f"\n[yellow]Found {unused} unused {plural}, use --clean to delete {pronoun}.[/yellow]"
            )


def _load_config(config: str) -> RunnerConfig:
    try:
        return RunnerConfig.load(config)
    except ConfigurationError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        console.print("Run 'might init' to create a default config.")
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression testing across browser engines"""
    setup_logging(verbose)


@cli.command()
@click.option("--config", default=str(DEFAULT_CONFIG_PATH), help="Config file path")
@click.option("--map", "map_path", default=str(DEFAULT_MAP_PATH), help="Map file path")
@click.option("--target", "-t", help="Comma separated test titles to run (escape commas as \\,)")
@click.option("--update", "-u", is_flag=True, help="Update targeted or failing screenshots")
@click.option("--clean", is_flag=True, help="Delete unused screenshots")
@click.option("--chromium", is_flag=True, help="Run on chromium")
@click.option("--firefox", is_flag=True, help="Run on firefox")
@click.option("--webkit", is_flag=True, help="Run on webkit")
@click.option("--parallel", "-p", type=int, help="How many tests run at the same time")
@click.option("--repeat", type=int, help="Run the whole map this many times")
@click.option("--coverage", "-c", is_flag=True, help="Collect a JS coverage report")
def run(
    config: str,
    map_path: str,
    target: Optional[str],
    update: bool,
    clean: bool,
    chromium: bool,
    firefox: bool,
    webkit: bool,
    parallel: Optional[int],
    repeat: Optional[int],
    coverage: bool,
) -> None:
    """Run the map and compare every test against its baselines."""
    cfg = _load_config(config)
    titles = parse_targets(target)

    picked = [e for e, on in zip(SUPPORTED_ENGINES, (chromium, firefox, webkit)) if on]
    targets = picked or cfg.targets

    if coverage and "chromium" not in targets:
        coverage = False
        console.print('[bold yellow]To enable coverage reports please add "chromium" '
                      "to your targets.[/bold yellow]\n")

    reporter = RunReporter(targeted=bool(titles))
    summary = Orchestrator(cfg, map_path).run(
        reporter,
        targets=targets,
        target=titles,
        update=update,
        clean=clean,
        parallel=parallel,
        repeat=repeat,
        coverage=coverage,
    )

    print_summary(summary, targeted=bool(titles), clean=clean, update=update)
    if summary.failed or (reporter.errors and summary.total == 0):
        sys.exit(1)


@cli.command("print")
@click.option("--config", default=str(DEFAULT_CONFIG_PATH), help="Config file path")
@click.option("--map", "map_path", default=str(DEFAULT_MAP_PATH), help="Map file path")
@click.option("--target", "-t", help="Comma separated test titles to list")
def print_map(config: str, map_path: str, target: Optional[str]) -> None:
    """List the tests in the map with their steps."""
    url = None
    if Path(config).exists():
        url = _load_config(config).url

    tests = Orchestrator(RunnerConfig(url=url or ""), map_path).load_tests()
    if tests is None:
        console.print(f"[red]Unable to load map file: {map_path}[/red]")
        sys.exit(1)

    titles = parse_targets(target)
    if titles:
        tests = [t for t in tests if t.title in titles]
    if not tests:
        console.print("[yellow]Map has no tests.[/yellow]")
        return

    for i, test in enumerate(tests, 1):
        console.print(f"[bold]{i}. {escape(test.display_name(url))}[/bold]")
        steps = steps_to_string(test.steps, pretty=True, url=url)
        console.print(f"   [grey50]{escape(steps)}[/grey50]")


@cli.command()
@click.option("--url", "-u", prompt="Target URL", help="URL of the app under test")
@click.option("--start-command", "-s", default=None, help="Command that starts the app")
@click.option("--config", default=str(DEFAULT_CONFIG_PATH), help="Config file path")
def init(url: str, start_command: Optional[str], config: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    cfg = RunnerConfig(url=url, start_command=start_command)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd tests to might.map.json and run:")
    console.print("  [blue]might run[/blue]")


if __name__ == "__main__":
    cli()
