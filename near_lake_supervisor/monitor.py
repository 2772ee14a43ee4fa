"""
Stall detection for the indexer's block height.

StallMonitor keeps the last known height and the time it last moved. Each call to
evaluate() fetches the current height, classifies it, and restarts the container
once the height (or the fetch itself) has been stuck for longer than stall_timeout.
"""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from near_lake_supervisor.config import MonitorConfig
from near_lake_supervisor.fetcher import FetchError, MetricFetcher
from near_lake_supervisor.log import default_log
from near_lake_supervisor.restarter import ContainerRestarter, RestartError


class Phase(enum.Enum):
    UNKNOWN = "unknown"
    PROGRESSING = "progressing"
    STALLED = "stalled"
    COOLING_DOWN = "cooling_down"


class Outcome(enum.Enum):
    SKIPPED = "skipped"
    PROGRESSED = "progressed"
    REGRESSED = "regressed"
    STALLED = "stalled"
    FETCH_FAILED = "fetch_failed"
    RESTARTED = "restarted"
    RESTART_FAILED = "restart_failed"


@dataclass
class MonitorState:
    last_height: Optional[int]
    last_progress_time: float
    restarting: bool = False
    phase: Phase = Phase.UNKNOWN


class StallMonitor:
    def __init__(
        self,
        config: MonitorConfig,
        fetcher: MetricFetcher,
        restarter: ContainerRestarter,
        clock: Callable[[], float] = time.monotonic,
        log: Callable[[str], None] = default_log,
    ):
        self.config = config
        self.fetcher = fetcher
        self.restarter = restarter
        self.clock = clock
        self.log = log
        self.state = MonitorState(last_height=None, last_progress_time=clock())
        # Guards state.restarting, which the cooldown timer clears from its own thread
        self._flag_lock = threading.Lock()
        self._evaluating = threading.Lock()

    @property
    def phase(self) -> Phase:
        with self._flag_lock:
            if self.state.restarting:
                return Phase.COOLING_DOWN
        return self.state.phase

    @property
    def restarting(self) -> bool:
        with self._flag_lock:
            return self.state.restarting

    def end_cooldown(self) -> None:
        with self._flag_lock:
            self.state.restarting = False
        self.log("Restart cooldown complete, resuming monitoring")

    def prime(self) -> None:
        """Initial query at startup. A failure is only reported; the stall clock starts now either way."""
        try:
            sample = self.fetcher.fetch(self.config)
        except FetchError as e:
            self.log(f"WARN: Failed to query block height: {e}")
            return
        self.state.last_height = sample.height
        self.state.last_progress_time = self.clock()
        self.state.phase = Phase.PROGRESSING
        self.log(f"Initial block height: {sample.height}")

    def evaluate(self) -> Outcome:
        if not self._evaluating.acquire(blocking=False):
            self.log("WARN: Previous evaluation still running, skipping tick")
            return Outcome.SKIPPED
        try:
            return self._evaluate()
        finally:
            self._evaluating.release()

    def _evaluate(self) -> Outcome:
        # The flag as read here holds for the whole tick
        with self._flag_lock:
            restarting = self.state.restarting
        if restarting:
            self.log("Still in restart cooldown period, skipping query")
            return Outcome.SKIPPED

        state = self.state
        try:
            sample = self.fetcher.fetch(self.config)
        except FetchError as e:
            self.log(f"ERROR: Error querying block height: {e}")
            if self.clock() - state.last_progress_time > self.config.stall_timeout:
                self.log(
                    f"Block height query has been failing for more than {self.config.stall_timeout:g}s, "
                    f"attempting restart"
                )
                return self._restart()
            return Outcome.FETCH_FAILED

        now = self.clock()
        height = sample.height
        last = state.last_height
        self.log(f"Current block height: {height} (last: {last if last is not None else 'unknown'})")

        if last is None or height > last:
            state.last_height = height
            state.last_progress_time = now
            state.phase = Phase.PROGRESSING
            self.log(f"Block height progressing: {height}")
            return Outcome.PROGRESSED

        if height == last:
            state.phase = Phase.STALLED
            stall_duration = now - state.last_progress_time
            self.log(f"Block height stalled at {height} for {stall_duration:.0f}s")
            if stall_duration > self.config.stall_timeout:
                self.log(
                    f"[ALERT] Block height has been stalled for {stall_duration:.0f}s "
                    f"(threshold: {self.config.stall_timeout:g}s), restarting container"
                )
                return self._restart()
            return Outcome.STALLED

        self.log(f"WARN: Block height decreased from {last} to {height}")
        state.last_height = height
        state.last_progress_time = now
        state.phase = Phase.PROGRESSING
        return Outcome.REGRESSED

    def _restart(self) -> Outcome:
        try:
            self.restarter.restart(self.config.container_name)
        except RestartError as e:
            self.log(f"ERROR: Error restarting container: {e}")
            return Outcome.RESTART_FAILED

        with self._flag_lock:
            self.state.restarting = True
        self.state.last_progress_time = self.clock()
        self.log(
            f"Restart of {self.config.container_name} succeeded, "
            f"cooling down for {self.config.restart_sleep:g}s"
        )
        return Outcome.RESTARTED
