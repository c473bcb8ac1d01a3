"""
Pytest configuration and shared fixtures for procwarden tests.
"""

from typing import List

import pytest

from procwarden.core import observability
from procwarden.core.config import RunnerConfig
from procwarden.core.observability import MetricsCollector
from procwarden.core.reaper import PsutilProcessDirectory
from procwarden.core.runner import ProcessRunner


class RecordingDirectory(PsutilProcessDirectory):
    """psutil directory that remembers which root pids the runner looked up."""

    def __init__(self):
        self.roots: List[int] = []

    def start_time_of(self, pid: int) -> float:
        self.roots.append(pid)
        return super().start_time_of(pid)


@pytest.fixture(autouse=True)
def metrics(monkeypatch):
    """Give every test its own metrics registry."""
    collector = MetricsCollector()
    monkeypatch.setattr(observability, "_metrics_collector", collector)
    return collector


@pytest.fixture
def runner_config():
    return RunnerConfig(kill_wait_timeout=2.0)


@pytest.fixture
def directory():
    return RecordingDirectory()


@pytest.fixture
def runner(runner_config, directory):
    return ProcessRunner(runner_config, directory=directory)
