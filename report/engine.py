# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: durable audit trail for the guard pipeline. every (event, verdict, response) triple is
appended to a JSON-lines log, which is the only source of truth for summaries. while the agent
is learning, report() also folds the event into the baseline and hands back the new baseline;
the caller adopts it, the engine keeps no baseline of its own. non-benign verdicts additionally
produce an anonymized intelligence record for an external uploader.

nothing here raises into the pipeline: a failed write is logged, a corrupt log line is skipped,
and a summary over a missing log is simply empty.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # for the JSON-lines log
import logging  # for write failures
import threading  # for the single writer handle
import time  # for summary windows
from collections import Counter  # for verdict/action/IP tallies
from collections.abc import Callable  # type hint for the injected clock
from dataclasses import dataclass, field  # for result values
from pathlib import Path  # for the log path
from typing import IO, Any  # type hints for the writer and JSON values

from core.models import (
    AnonymizedThreatData,
    Event,
    ReportRecord,
    ResponseResult,
    TargetKind,
    ThreatVerdict,
    extract_target,
    iso_now,
    parse_iso,
)
from memory.baseline import EnvironmentBaseline, update_baseline
from report.anonymize import anonymize_ip, host_timezone, region_from_timezone

log = logging.getLogger("vigilguard.report")

TOP_SOURCES = 10
NON_BLOCKING_ACTIONS = ("log_only", "notify")


@dataclass(frozen=True)
class ReportOutcome:
    baseline: EnvironmentBaseline
    intel: AnonymizedThreatData | None = None


@dataclass(frozen=True)
class ReportSummary:
    period_start: str
    period_end: str
    total_events: int
    threats_blocked: int
    suspicious_events: int
    benign_events: int
    verdict_breakdown: dict[str, int] = field(default_factory=dict)
    top_attack_sources: list[dict[str, Any]] = field(default_factory=list)
    actions_taken: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": {"start": self.period_start, "end": self.period_end},
            "total_events": self.total_events,
            "threats_blocked": self.threats_blocked,
            "suspicious_events": self.suspicious_events,
            "benign_events": self.benign_events,
            "verdict_breakdown": dict(self.verdict_breakdown),
            "top_attack_sources": list(self.top_attack_sources),
            "actions_taken": list(self.actions_taken),
        }


def attack_source_ip(event: Event, verdict: ThreatVerdict) -> str | None:
    ip = event.meta("sourceIP", "remoteAddress")
    if ip is not None:
        return str(ip)
    target = extract_target(verdict, TargetKind.IP)
    return str(target.value) if target.found else None


def matched_rules(verdict: ThreatVerdict) -> str:
    ids = [
        str(e.data["ruleId"])
        for e in verdict.evidence
        if e.source == "rule_match" and e.data is not None and e.data.get("ruleId")
    ]
    return ",".join(ids) if ids else "none"


class ReportEngine:
    def __init__(
        self,
        log_path: str | Path,
        mode: str = "learning",
        region: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.log_path = Path(log_path)
        self.mode = mode
        self.region = region or region_from_timezone(host_timezone())
        self._clock = clock
        self._lock = threading.Lock()
        self._fh: IO[str] | None = None
        self.report_count = 0

    def set_mode(self, mode: str) -> None:
        self.mode = mode

    # --- writing ---

    def _append(self, line: str) -> None:
        with self._lock:
            try:
                if self._fh is None:
                    self.log_path.parent.mkdir(parents=True, exist_ok=True)
                    self._fh = open(self.log_path, "a", encoding="utf-8")
                self._fh.write(line + "\n")
                self._fh.flush()
            except Exception as e:
                log.error(f"Failed to write report log {self.log_path}: {e}")
                self._close_locked()  # reopen on the next write

    def _close_locked(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except Exception as e:
                log.error(f"Failed to close report log: {e}")
            self._fh = None

    def close(self) -> None:
        with self._lock:
            self._close_locked()

    def report(
        self,
        event: Event,
        verdict: ThreatVerdict,
        response: ResponseResult,
        baseline: EnvironmentBaseline,
    ) -> ReportOutcome:
        now = self._clock()
        record = ReportRecord(event, verdict, response, iso_now(now))
        try:
            line = json.dumps(record.to_dict(), default=str)
        except Exception as e:
            log.error(f"Failed to serialize report for event {event.id}: {e}")
        else:
            self._append(line)
        self.report_count += 1

        new_baseline = baseline
        if self.mode == "learning":
            new_baseline = update_baseline(baseline, event, now=now)

        intel = None
        if not verdict.is_benign:
            intel = self.anonymize(event, verdict, now)
        return ReportOutcome(new_baseline, intel)

    def anonymize(
        self, event: Event, verdict: ThreatVerdict, now: float | None = None
    ) -> AnonymizedThreatData:
        ip = attack_source_ip(event, verdict) or "unknown"
        return AnonymizedThreatData(
            ip=anonymize_ip(ip),
            attack_type=event.category or "unknown",
            mitre_technique=verdict.mitre_technique or "unknown",
            sigma_rule_matched=matched_rules(verdict),
            timestamp=iso_now(self._clock() if now is None else now),
            region=self.region,
        )

    # --- reading ---

    def read_records(self) -> list[ReportRecord]:
        """snapshot of every well-formed record in the log; bad lines are skipped"""
        try:
            text = self.log_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return []
        except Exception as e:
            log.error(f"Failed to read report log {self.log_path}: {e}")
            return []

        records = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                records.append(ReportRecord.from_dict(json.loads(line)))
            except Exception:
                continue  # corrupt or partial line
        return records

    def generate_summary(self, hours_back: float) -> ReportSummary:
        end = self._clock()
        start = end - hours_back * 3600

        verdicts: Counter[str] = Counter({"benign": 0, "suspicious": 0, "malicious": 0})
        actions: Counter[str] = Counter()
        sources: Counter[str] = Counter()  # Counter keeps first-insertion order for ties
        total = 0
        blocked = 0

        for rec in self.read_records():
            ts = parse_iso(rec.timestamp)
            if ts is None or ts.timestamp() < start:
                continue
            total += 1
            verdicts[rec.verdict.conclusion] += 1
            actions[rec.response.action] += 1
            if rec.response.action not in NON_BLOCKING_ACTIONS and rec.response.success:
                blocked += 1
            if not rec.verdict.is_benign:
                ip = attack_source_ip(rec.event, rec.verdict)
                if ip:
                    sources[ip] += 1

        return ReportSummary(
            period_start=iso_now(start),
            period_end=iso_now(end),
            total_events=total,
            threats_blocked=blocked,
            suspicious_events=verdicts["suspicious"],
            benign_events=verdicts["benign"],
            verdict_breakdown=dict(verdicts),
            top_attack_sources=[
                {"ip": ip, "count": n} for ip, n in sources.most_common(TOP_SOURCES)
            ],
            actions_taken=[{"action": a, "count": n} for a, n in actions.most_common()],
        )

    def generate_daily_summary(self) -> ReportSummary:
        return self.generate_summary(24)

    def generate_weekly_summary(self) -> ReportSummary:
        return self.generate_summary(168)
