# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the agent's operational loop. events enter through submit() and are handled one at a time
by a single worker thread: score against the baseline -> get a verdict -> respond -> report ->
adopt the returned baseline. only that worker ever replaces the baseline, so the immutable
baseline value needs no lock.

alongside the worker:
- status timer: queue a heartbeat for the worker, expire old IP blocks. the worker itself
  reports to the watchdog, so a stuck pipeline stops the heartbeats
- learning timer: flip to protection mode once the learning period is over
- watchdog: calls request_restart() when heartbeats stop

stop() (or SIGINT/SIGTERM via the CLI) shuts down in order: watchdog, worker, log writer,
baseline save, pid file.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for lifecycle lines
import queue  # for the single-writer event queue
import threading  # for the worker and timers
import time  # for uptime
from collections import deque  # bounded intel buffer
from collections.abc import Callable  # type hints for injected callables
from typing import Any  # type hint for flexible dictionary values

import psutil  # for memory usage in status()

from app.config import Config
from core.models import AnonymizedThreatData, Event, Evidence, ResponseResult, ThreatVerdict
from daemon.pidfile import PidFile
from daemon.watchdog import Watchdog
from memory.baseline import EnvironmentBaseline, check_deviation, load_baseline, save_baseline
from memory.learning import (
    baseline_summary,
    is_learning_complete,
    learning_progress,
    remaining_days,
    switch_to_protection_mode,
)
from report.anonymize import host_timezone, region_from_timezone
from report.engine import ReportEngine
from response.engine import RespondEngine
from response.executors import ActionExecutor
from response.quarantine import FileQuarantine

log = logging.getLogger("vigilguard.engine")

# (event, baseline) -> verdict; stands in for the external detect/analyze stage
Detector = Callable[[Event, EnvironmentBaseline], ThreatVerdict]
IntelSink = Callable[[AnonymizedThreatData], None]

INTEL_BUFFER_MAX = 1000
_STOP = object()  # queue sentinels
_CHECK_LEARNING = object()
_HEARTBEAT = object()


def baseline_detector(event: Event, baseline: EnvironmentBaseline) -> ThreatVerdict:
    """default detector: a baseline deviation is suspicious, anything else is benign"""
    dev = check_deviation(baseline, event)
    if not dev.is_deviation:
        return ThreatVerdict("benign", 0, dev.description, (), "log_only")
    evidence = Evidence(
        source="baseline_deviation",
        description=dev.description,
        confidence=dev.confidence,
        data={"deviationType": dev.deviation_type, **dict(event.metadata)},
    )
    return ThreatVerdict("suspicious", dev.confidence, dev.description, (evidence,), "notify")


class GuardEngine:
    def __init__(
        self,
        config: Config,
        detector: Detector | None = None,
        executor: ActionExecutor | None = None,
        pid_file: PidFile | None = None,
        intel_sink: IntelSink | None = None,
    ) -> None:
        self.config = config
        self.detector = detector or baseline_detector
        self.intel_sink = intel_sink
        self.pid_file = pid_file or PidFile(config.data_dir)
        self.quarantine = FileQuarantine(config.quarantine_dir)
        self.respond_engine = RespondEngine(
            policy=config.policy,
            mode="learning",
            extra_whitelist=config.whitelist_ips,
            executor=executor,
            quarantine=self.quarantine,
        )
        self.report_engine = ReportEngine(
            config.log_path,
            mode="learning",
            region=region_from_timezone(config.timezone or host_timezone()),
        )
        self.baseline: EnvironmentBaseline = load_baseline(config.baseline_path)
        self.watchdog: Watchdog | None = None
        if config.watchdog_enabled:
            self.watchdog = Watchdog(config.watchdog_interval_sec, self.request_restart)

        self.events_processed = 0
        self.threats_detected = 0
        self.actions_executed = 0
        self.intel: deque[AnonymizedThreatData] = deque(maxlen=INTEL_BUFFER_MAX)

        self._queue: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None
        self._timers: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._started_at: float | None = None
        self._stopping = False
        self._stopped = False
        self._restart_requested = threading.Event()
        self._heartbeat_pending = threading.Event()  # at most one heartbeat queued at a time

    # --- mode ---

    @property
    def mode(self) -> str:
        return self.respond_engine.mode

    def _apply_mode(self, mode: str) -> None:
        self.respond_engine.set_mode(mode)
        self.report_engine.set_mode(mode)

    # --- lifecycle ---

    def start(self) -> None:
        self.pid_file.write()
        self._started_at = time.time()

        if self.baseline.learning_complete or self.config.mode == "protection":
            if not self.baseline.learning_complete:
                self.baseline = switch_to_protection_mode(self.baseline)
            self._apply_mode("protection")
        else:
            self._apply_mode("learning")
            self.check_learning()

        self._worker = threading.Thread(target=self._work, name="vigilguard-worker", daemon=True)
        self._worker.start()
        self._start_timer(self.config.heartbeat_interval_sec, self._status_tick, "status")
        self._start_timer(
            self.config.learning_check_interval_sec,
            lambda: self._queue.put(_CHECK_LEARNING),  # baseline changes stay on the worker
            "learning",
        )
        if self.watchdog is not None:
            self.watchdog.start()
        log.info(f"VigilGuard started in {self.mode} mode (data dir {self.config.data_dir})")

    def _start_timer(self, interval: float, fn: Callable[[], Any], name: str) -> None:
        def _loop() -> None:
            while not self._stop_event.wait(interval):
                try:
                    fn()
                except Exception:
                    log.exception(f"{name} timer failed")

        t = threading.Thread(target=_loop, name=f"vigilguard-{name}", daemon=True)
        t.start()
        self._timers.append(t)

    def _status_tick(self) -> None:
        if self.watchdog is not None and not self._heartbeat_pending.is_set():
            self._heartbeat_pending.set()
            self._queue.put(_HEARTBEAT)
        self.respond_engine.release_expired_blocks()

    def request_restart(self) -> None:
        """watchdog callback. safe to call any number of times, and during shutdown"""
        with self._state_lock:
            if self._stopping or self._restart_requested.is_set():
                return
            self._restart_requested.set()
        log.error("Watchdog requested a restart, shutting down so the service manager restarts us")
        threading.Thread(target=self.stop, name="vigilguard-restart", daemon=True).start()

    @property
    def restart_requested(self) -> bool:
        return self._restart_requested.is_set()

    def stop(self) -> None:
        with self._state_lock:
            if self._stopping:
                return
            self._stopping = True

        if self.watchdog is not None:
            self.watchdog.stop()
        self._stop_event.set()
        if self._worker is not None:
            self._queue.put(_STOP)
            if self._worker is not threading.current_thread():
                self._worker.join(timeout=30)
        for t in self._timers:
            if t is not threading.current_thread():
                t.join(timeout=5)
        self.report_engine.close()
        save_baseline(self.baseline, self.config.baseline_path)
        self.pid_file.remove()
        self._stopped = True
        log.info("VigilGuard stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """block until stop() has finished (or timeout); returns True when stopped"""
        end = None if timeout is None else time.time() + timeout
        while not self._stopped:
            if end is not None and time.time() >= end:
                return False
            time.sleep(0.2)
        return True

    # --- pipeline ---

    def submit(self, event: Event, verdict: ThreatVerdict | None = None) -> None:
        if self._stopping:
            log.warning(f"Dropping event {event.id}: engine is stopping")
            return
        self._queue.put((event, verdict))

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            if item is _HEARTBEAT:
                self._heartbeat_pending.clear()
                if self.watchdog is not None:
                    self.watchdog.heartbeat()
                continue
            if item is _CHECK_LEARNING:
                try:
                    self.check_learning()
                except Exception:
                    log.exception("Learning check failed")
                continue
            event, verdict = item
            try:
                self.process(event, verdict)
            except Exception:
                log.exception(f"Pipeline failed for event {event.id}")

    def process(
        self, event: Event, verdict: ThreatVerdict | None = None
    ) -> tuple[ResponseResult, AnonymizedThreatData | None]:
        if verdict is None:
            verdict = self.detector(event, self.baseline)

        response = self.respond_engine.respond(verdict)
        outcome = self.report_engine.report(event, verdict, response, self.baseline)
        self.baseline = outcome.baseline  # adopt the new value

        self.events_processed += 1
        if not verdict.is_benign:
            self.threats_detected += 1
        if response.action != "log_only":
            self.actions_executed += 1
        if outcome.intel is not None:
            self.intel.append(outcome.intel)
            if self.intel_sink is not None:
                try:
                    self.intel_sink(outcome.intel)
                except Exception:
                    log.exception("Intel sink failed")
        return response, outcome.intel

    def drain_intel(self) -> list[AnonymizedThreatData]:
        items = []
        while self.intel:
            items.append(self.intel.popleft())
        return items

    # --- learning ---

    def check_learning(self) -> bool:
        """switch to protection once the learning period has elapsed; True if it switched"""
        if self.mode != "learning":
            return False
        if not is_learning_complete(self.baseline, self.config.learning_days):
            return False
        self.baseline = switch_to_protection_mode(self.baseline)
        self._apply_mode("protection")
        save_baseline(self.baseline, self.config.baseline_path)
        summary = baseline_summary(self.baseline)
        log.info(
            f"Learning complete: {summary.process_count} processes, "
            f"{summary.connection_count} connections, {summary.event_count} events; "
            "switching to protection mode"
        )
        return True

    # --- status ---

    def status(self) -> dict[str, Any]:
        try:
            rss = psutil.Process().memory_info().rss
        except psutil.Error:
            rss = None
        uptime = time.time() - self._started_at if self._started_at else 0.0
        return {
            "mode": self.mode,
            "events_processed": self.events_processed,
            "threats_detected": self.threats_detected,
            "actions_executed": self.actions_executed,
            "action_count": self.respond_engine.action_count,
            "reports_written": self.report_engine.report_count,
            "learning_progress": learning_progress(self.baseline, self.config.learning_days),
            "learning_remaining_days": remaining_days(self.baseline, self.config.learning_days),
            "baseline": baseline_summary(self.baseline).to_dict(),
            "blocked_ips": len(self.respond_engine.blocked_ips()),
            "quarantined_files": len(self.quarantine.active_records()),
            "uptime_sec": round(uptime, 1),
            "memory_rss": rss,
            "pending_intel": len(self.intel),
        }
