# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: learning -> protection state machine over a baseline. the transition is one-way: once
learning_complete is set it is never cleared, and switching returns a new baseline value.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace

from core.models import iso_now, parse_iso
from memory.baseline import EnvironmentBaseline

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class BaselineSummary:
    process_count: int
    connection_count: int
    login_pattern_count: int
    port_count: int
    event_count: int
    confidence_level: float
    learning_complete: bool

    def to_dict(self) -> dict:
        return {
            "process_count": self.process_count,
            "connection_count": self.connection_count,
            "login_pattern_count": self.login_pattern_count,
            "port_count": self.port_count,
            "event_count": self.event_count,
            "confidence_level": self.confidence_level,
            "learning_complete": self.learning_complete,
        }


def elapsed_days(baseline: EnvironmentBaseline, now: float | None = None) -> float:
    started = parse_iso(baseline.learning_started)
    if started is None:
        return 0.0
    current = time.time() if now is None else now
    return max(0.0, (current - started.timestamp()) / SECONDS_PER_DAY)


def is_learning_complete(
    baseline: EnvironmentBaseline, learning_days: float, now: float | None = None
) -> bool:
    if baseline.learning_complete:
        return True
    return elapsed_days(baseline, now) >= learning_days


def learning_progress(
    baseline: EnvironmentBaseline, learning_days: float, now: float | None = None
) -> int:
    """0-100 percentage of the learning period that has passed"""
    if baseline.learning_complete or learning_days <= 0:
        return 100
    pct = elapsed_days(baseline, now) / learning_days * 100
    return int(max(0.0, min(100.0, pct)))


def remaining_days(
    baseline: EnvironmentBaseline, learning_days: float, now: float | None = None
) -> int:
    if baseline.learning_complete:
        return 0
    return max(0, math.ceil(learning_days - elapsed_days(baseline, now)))


def switch_to_protection_mode(
    baseline: EnvironmentBaseline, now: float | None = None
) -> EnvironmentBaseline:
    return replace(baseline, learning_complete=True, last_updated=iso_now(now))


def baseline_summary(baseline: EnvironmentBaseline) -> BaselineSummary:
    return BaselineSummary(
        process_count=len(baseline.normal_processes),
        connection_count=len(baseline.normal_connections),
        login_pattern_count=len(baseline.normal_login_patterns),
        port_count=len(baseline.normal_service_ports),
        event_count=baseline.event_count,
        confidence_level=baseline.confidence_level,
        learning_complete=baseline.learning_complete,
    )
