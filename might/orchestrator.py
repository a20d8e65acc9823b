"""Run orchestrator — coordinates config, map loading, the app server and the runner."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Optional

from might.errors import ConfigurationError
from might.executor.aggregator import Listener
from might.executor.runner import Runner
from might.models.config import RunnerConfig
from might.models.result import RunSummary
from might.models.test_map import TestCase, TestMap

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("might.config.json")
DEFAULT_MAP_PATH = Path("might.map.json")


class Orchestrator:
    """Coordinates one visual regression run."""

    def __init__(self, config: RunnerConfig, map_path: str | Path = DEFAULT_MAP_PATH):
        self.config = config
        self.map_path = Path(map_path)
        self._server: Optional[subprocess.Popen] = None

    def load_tests(self) -> Optional[list[TestCase]]:
        """Tests from the map file, or None when the map can't be loaded."""
        try:
            return TestMap.load(self.map_path).data
        except ConfigurationError as e:
            logger.error("%s", e)
            return None

    def run(self, on_event: Optional[Listener] = None, **overrides) -> RunSummary:
        """Run the map; ``overrides`` replace config values for this run only."""
        options = self.config.to_run_options(**overrides)
        tests = self.load_tests()

        if tests is not None:
            self.start_server()
        try:
            return asyncio.run(Runner(options, tests).run(on_event))
        finally:
            self.stop_server()

    def start_server(self) -> None:
        """Spawn the configured app start command, if any."""
        command = self.config.start_command
        if not command:
            return
        logger.info("Starting app: %s", command)
        self._server = subprocess.Popen(
            command, shell=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
        )

    def stop_server(self) -> None:
        if self._server is None:
            return
        if self._server.poll() is None:
            logger.debug("Stopping app (pid %d)", self._server.pid)
            self._server.terminate()
            try:
                self._server.wait(timeout=10)
            except subprocess.TimeoutExpired:
                self._server.kill()
        self._server = None
