from __future__ import annotations

import sys
import threading
import time
from typing import Callable, Optional

from near_lake_supervisor.monitor import Outcome, StallMonitor


class Scheduler:
    """
    Drives StallMonitor.evaluate() every `interval` seconds from a single thread, so
    evaluations never overlap. Ticks stay aligned to the start time; ticks missed while
    an evaluation overran (e.g. a slow restart) are dropped rather than queued.

    After a successful restart a one-shot cooldown timer is armed; it clears the
    monitor's restarting flag from its own thread while polling carries on.
    """

    def __init__(
        self,
        monitor: StallMonitor,
        interval: float,
        cooldown: float,
        shutdown: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.monitor = monitor
        self.interval = interval
        self.cooldown = cooldown
        self.shutdown = shutdown or threading.Event()
        self.clock = clock
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()

    @property
    def cooldown_active(self) -> bool:
        with self._timer_lock:
            return self._timer is not None and self._timer.is_alive()

    def arm_cooldown(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.cooldown, self.monitor.end_cooldown)
            self._timer.daemon = True
            self._timer.start()

    def cancel_cooldown(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def tick(self) -> Outcome:
        outcome = None
        try:
            outcome = self.monitor.evaluate()
        finally:
            # A restart flag left set without a running timer would never be cleared,
            # even if the tick raised after the restart went through
            if outcome is Outcome.RESTARTED or (self.monitor.restarting and not self.cooldown_active):
                self.arm_cooldown()
        return outcome

    def next_deadline(self, start: float, now: float) -> float:
        """First tick boundary (start + k * interval) strictly after now."""
        elapsed = now - start
        ticks = int(elapsed // self.interval) + 1
        return start + ticks * self.interval

    def run(self) -> None:
        start = self.clock()
        try:
            while True:
                deadline = self.next_deadline(start, self.clock())
                if self.shutdown.wait(timeout=max(0.0, deadline - self.clock())):
                    break
                try:
                    self.tick()
                except Exception as e:
                    self._report(f"ERROR: Unexpected error during evaluation: {e}")
        finally:
            self.cancel_cooldown()

    def _report(self, message: str) -> None:
        try:
            self.monitor.log(message)
        except Exception as e:
            print(f"{message} (log failed: {e})", file=sys.stderr, flush=True)
