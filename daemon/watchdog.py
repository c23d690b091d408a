# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: heartbeat watchdog. the supervised loop calls heartbeat(); a background thread wakes every
interval and, if no heartbeat arrived for more than three intervals, calls on_failure. the
watchdog only knows *that* the loop reported recently, never why it is alive.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for failure/start/stop lines
import threading  # for the timer thread and stop event
import time  # monotonic clock for elapsed time
from collections.abc import Callable  # type hint for the callback and clock

log = logging.getLogger("vigilguard.daemon")

MISSED_BEATS = 3  # elapsed > MISSED_BEATS * interval counts as a hang


class Watchdog:
    def __init__(
        self,
        interval_sec: float,
        on_failure: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = interval_sec
        self.on_failure = on_failure
        self._clock = clock
        self._last = clock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def heartbeat(self) -> None:
        self._last = self._clock()

    def elapsed(self) -> float:
        return self._clock() - self._last

    def check(self) -> bool:
        """one watchdog tick; returns True when on_failure was triggered"""
        elapsed = self.elapsed()
        if elapsed <= self.interval * MISSED_BEATS:
            return False
        log.error(f"Watchdog: no heartbeat for {elapsed:.1f}s, triggering restart")
        self._last = self._clock()  # re-arm so a single hang fires once per window
        try:
            self.on_failure()
        except Exception:
            log.exception("Watchdog failure callback raised")
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.check()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._last = self._clock()
        self._thread = threading.Thread(target=self._run, name="vigilguard-watchdog", daemon=True)
        self._thread.start()
        log.info(f"Watchdog started with {self.interval:g}s interval")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=max(1.0, self.interval))
        self._thread = None
        log.info("Watchdog stopped")
