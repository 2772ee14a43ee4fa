"""Shared fixtures for near-lake-supervisor tests."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Union
from unittest.mock import MagicMock

import pytest

from near_lake_supervisor.config import MonitorConfig
from near_lake_supervisor.fetcher import FetchError, MetricSample
from near_lake_supervisor.monitor import StallMonitor
from near_lake_supervisor.restarter import ContainerRestarter


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedFetcher:
    """Returns the given heights in order; a FetchError entry is raised instead of returned."""

    def __init__(self, results: Iterable[Union[int, FetchError]] = (), clock: "FakeClock" = None, latency: float = 0.0):
        self.results: List[Union[int, FetchError]] = list(results)
        self.calls = 0
        self.clock = clock
        self.latency = latency

    def fetch(self, config: MonitorConfig) -> MetricSample:
        self.calls += 1
        if self.clock is not None:
            self.clock.advance(self.latency)
        item = self.results.pop(0)
        if isinstance(item, FetchError):
            raise item
        return MetricSample(height=item, fetched_at=0.0, source="query")


class LogCapture(list):
    def __call__(self, message: str) -> None:
        self.append(message)

    def contains(self, text: str) -> bool:
        return any(text in line for line in self)


@pytest.fixture
def config() -> MonitorConfig:
    return MonitorConfig(
        indexer_url="http://indexer:3030",
        query_interval=30.0,
        stall_timeout=60.0,
        restart_sleep=900.0,
        container_name="near-lake-indexer",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def log() -> LogCapture:
    return LogCapture()


@pytest.fixture
def restarter() -> MagicMock:
    mock = MagicMock(spec=ContainerRestarter)
    mock.restart.return_value = "near-lake-indexer\n"
    return mock


@pytest.fixture
def make_monitor(config: MonitorConfig, clock: FakeClock, log: LogCapture, restarter: MagicMock):
    """Build a StallMonitor fed by a ScriptedFetcher with the given results."""

    def _make(results: Iterable[Union[int, FetchError]] = (), latency: float = 0.0, **overrides) -> StallMonitor:
        cfg = replace(config, **overrides) if overrides else config
        fetcher = ScriptedFetcher(results, clock=clock, latency=latency)
        return StallMonitor(cfg, fetcher, restarter, clock=clock, log=log)

    return _make
