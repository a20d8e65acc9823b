"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from might.models.config import RunnerConfig, RunOptions, ViewportConfig
from might.models.test_map import TestCase, TestMap, step_adapter


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def run_options(tmp_path: Path) -> RunOptions:
    """Run options writing baselines and coverage under tmp_path."""
    return RunOptions(
        url="http://localhost:8080",
        viewport=ViewportConfig(width=800, height=600),
        targets=["chromium"],
        screenshots_dir=tmp_path / "__might__",
        coverage_dir=tmp_path / "__coverage__",
    )


@pytest.fixture
def runner_config() -> RunnerConfig:
    return RunnerConfig(url="http://localhost:8080")


@pytest.fixture
def temp_config_file(runner_config: RunnerConfig, tmp_path: Path) -> Path:
    config_path = tmp_path / "might.config.json"
    runner_config.save(config_path)
    return config_path


# ============================================================================
# Map Fixtures
# ============================================================================


def _make_test(title=None, *steps) -> TestCase:
    """Build a TestCase from (action, value) pairs."""
    return TestCase(
        title=title,
        steps=[step_adapter.validate_python({"action": a, "value": v}) for a, v in steps],
    )


@pytest.fixture
def test_map() -> TestMap:
    return TestMap(data=[
        _make_test("Home", ("wait", 0.5)),
        _make_test("Menu", ("select", "#menu"), ("click", None)),
        _make_test(None, ("viewport", "390x844t"), ("goto", "/about")),
    ])


@pytest.fixture
def temp_map_file(test_map: TestMap, tmp_path: Path) -> Path:
    map_path = tmp_path / "might.map.json"
    test_map.save(map_path)
    return map_path


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock()
    page.url = "http://localhost:8080"
    page.on = Mock()  # sync callback registration
    page.viewport_size = {"width": 800, "height": 600}
    page.mouse = AsyncMock()
    page.keyboard = AsyncMock()
    page.query_selector_all.return_value = []
    page.query_selector.return_value = None
    return page


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser context."""
    context = AsyncMock()
    context.new_page.return_value = mock_page
    return context


@pytest.fixture
def mock_browser(mock_context: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser."""
    browser = AsyncMock()
    browser.new_context.return_value = mock_context
    return browser

