# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the host's behavioral baseline ("what normal looks like") and the deviation scorer that
reads it. the baseline is an immutable value: update_baseline() returns a new baseline and never
touches the one it was given, so a single writer can adopt the returned value after each event
without any locking.

how the pieces fit:
- create_empty_baseline(): fresh baseline at first run (learning starts now)
- load_baseline()/save_baseline(): JSON persistence, a missing or corrupt file falls back to empty
- check_deviation(): is this event's salient attribute already known? absence = deviation
- update_baseline(): additive-only learning; patterns are appended or their frequency bumped
- calculate_confidence(): how much history we have, grows with log(event_count) up to 0.95

deviation confidence is scaled by baseline confidence so a sparse baseline (first hours of
learning) produces weak deviation calls instead of a flood of confident false positives:

    confidence = round(base * (0.25 + 0.75 * confidence_level / 0.95))

base depends on the deviation type (new process 70, new destination 65, new user 60,
new listening port 55). the weight only grows with history, so for a fixed event the
deviation confidence never drops as the baseline grows.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # for reading and writing the baseline file
import logging  # for reporting persistence problems
import math  # for the logarithmic confidence curve
from collections.abc import Mapping  # type hint for dict-like inputs
from dataclasses import asdict, dataclass, replace  # immutable values and copy-with-changes
from datetime import datetime  # for login hour/day extraction
from pathlib import Path  # for file paths
from typing import Any  # type hint for flexible dictionary values

from core.models import Event, iso_now, parse_iso

log = logging.getLogger("vigilguard.memory")

MIN_EVENTS = 100  # below this the baseline is considered sparse
TARGET_EVENTS = 10_000  # event count at which confidence reaches its ceiling
MAX_CONFIDENCE = 0.95

# base deviation confidence per attribute type (0-100)
DEVIATION_BASE = {
    "new_process": 70,
    "new_network_dest": 65,
    "new_user": 60,
    "new_service_port": 55,
}


@dataclass(frozen=True)
class ProcessPattern:
    name: str
    path: str | None
    frequency: int
    first_seen: str
    last_seen: str


@dataclass(frozen=True)
class ConnectionPattern:
    remote_address: str
    remote_port: int
    protocol: str
    frequency: int
    first_seen: str
    last_seen: str


@dataclass(frozen=True)
class LoginPattern:
    username: str
    source_ip: str | None
    hour_of_day: int
    day_of_week: int
    frequency: int
    first_seen: str
    last_seen: str


@dataclass(frozen=True)
class PortPattern:
    port: int
    service: str | None
    frequency: int
    first_seen: str
    last_seen: str


@dataclass(frozen=True)
class EnvironmentBaseline:
    normal_processes: tuple[ProcessPattern, ...]
    normal_connections: tuple[ConnectionPattern, ...]
    normal_login_patterns: tuple[LoginPattern, ...]
    normal_service_ports: tuple[PortPattern, ...]
    event_count: int
    confidence_level: float
    learning_started: str
    learning_complete: bool
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "normal_processes": [asdict(p) for p in self.normal_processes],
            "normal_connections": [asdict(c) for c in self.normal_connections],
            "normal_login_patterns": [asdict(lp) for lp in self.normal_login_patterns],
            "normal_service_ports": [asdict(p) for p in self.normal_service_ports],
            "event_count": self.event_count,
            "confidence_level": self.confidence_level,
            "learning_started": self.learning_started,
            "learning_complete": self.learning_complete,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EnvironmentBaseline:
        # any missing/mistyped section raises; load_baseline() treats that as a corrupt file
        return cls(
            normal_processes=tuple(ProcessPattern(**p) for p in data["normal_processes"]),
            normal_connections=tuple(ConnectionPattern(**c) for c in data["normal_connections"]),
            normal_login_patterns=tuple(LoginPattern(**lp) for lp in data["normal_login_patterns"]),
            normal_service_ports=tuple(PortPattern(**p) for p in data["normal_service_ports"]),
            event_count=int(data["event_count"]),
            confidence_level=float(data["confidence_level"]),
            learning_started=str(data["learning_started"]),
            learning_complete=bool(data["learning_complete"]),
            last_updated=str(data["last_updated"]),
        )


@dataclass(frozen=True)
class DeviationResult:
    is_deviation: bool
    deviation_type: str
    confidence: int
    description: str


def create_empty_baseline(now: float | None = None) -> EnvironmentBaseline:
    stamp = iso_now(now)
    return EnvironmentBaseline(
        normal_processes=(),
        normal_connections=(),
        normal_login_patterns=(),
        normal_service_ports=(),
        event_count=0,
        confidence_level=0.0,
        learning_started=stamp,
        learning_complete=False,
        last_updated=stamp,
    )


def load_baseline(path: str | Path) -> EnvironmentBaseline:
    p = Path(path)
    if not p.exists():
        return create_empty_baseline()
    try:
        data = json.loads(p.read_text(encoding="utf-8") or "{}")
        return EnvironmentBaseline.from_dict(data)
    except Exception as e:
        # corrupt or old-format baseline: start learning again instead of failing startup
        log.warning(f"Baseline at {p} unreadable ({e}), starting with an empty baseline")
        return create_empty_baseline()


def save_baseline(baseline: EnvironmentBaseline, path: str | Path) -> bool:
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(json.dumps(baseline.to_dict(), indent=2), encoding="utf-8")
        tmp.replace(p)  # whole-file overwrite, readers never see half a baseline
        return True
    except Exception as e:
        log.error(f"Failed to save baseline to {p}: {e}")
        return False


# --- salient attribute extraction ---


def _process_name(event: Event) -> str | None:
    name = event.meta("processName")
    return str(name) if name is not None else None


def _remote_address(event: Event) -> str | None:
    if event.source != "network":
        return None
    addr = event.meta("remoteAddress", "destinationIP", "sourceIP")
    return str(addr) if addr is not None else None


def _username(event: Event) -> str | None:
    user = event.meta("user", "username")
    return str(user) if user is not None else None


def _listening_port(event: Event) -> int | None:
    port = event.meta("listeningPort")
    try:
        return int(port) if port is not None else None
    except (TypeError, ValueError):
        return None


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# --- scoring ---


def calculate_confidence(event_count: int) -> float:
    if event_count < MIN_EVENTS:
        return event_count / MIN_EVENTS * 0.3
    progress = math.log(event_count / MIN_EVENTS) / math.log(TARGET_EVENTS / MIN_EVENTS)
    return min(MAX_CONFIDENCE, 0.3 + progress * 0.65)


def deviation_weight(baseline: EnvironmentBaseline) -> float:
    level = max(0.0, min(baseline.confidence_level, MAX_CONFIDENCE))
    return 0.25 + 0.75 * (level / MAX_CONFIDENCE)


def _deviation(baseline: EnvironmentBaseline, kind: str, description: str) -> DeviationResult:
    score = round(DEVIATION_BASE[kind] * deviation_weight(baseline))
    return DeviationResult(True, kind, max(0, min(100, score)), description)


def check_deviation(baseline: EnvironmentBaseline, event: Event) -> DeviationResult:
    """
    compare the event's salient attributes with the baseline. the first unknown attribute
    decides the result, checked in order: process, network destination, listening port, user.
    """
    name = _process_name(event)
    if name:
        if not any(p.name == name for p in baseline.normal_processes):
            return _deviation(baseline, "new_process", f"New process not in baseline: {name}")

    addr = _remote_address(event)
    if addr is not None:
        if not any(c.remote_address == addr for c in baseline.normal_connections):
            return _deviation(
                baseline, "new_network_dest", f"New network destination not in baseline: {addr}"
            )

    port = _listening_port(event)
    if port is not None:
        if not any(p.port == port for p in baseline.normal_service_ports):
            return _deviation(
                baseline, "new_service_port", f"New listening port not in baseline: {port}"
            )

    user = _username(event)
    if user is not None:
        if not any(lp.username == user for lp in baseline.normal_login_patterns):
            return _deviation(baseline, "new_user", f"New user activity not in baseline: {user}")

    return DeviationResult(False, "none", 0, "Event within normal baseline parameters")


# --- learning ---


def _event_time(event: Event) -> datetime:
    dt = parse_iso(event.timestamp)
    return dt.astimezone() if dt is not None else datetime.now().astimezone()


def update_baseline(
    baseline: EnvironmentBaseline, event: Event, now: float | None = None
) -> EnvironmentBaseline:
    """fold one event into the baseline. returns a new value; never removes anything"""
    if baseline.learning_complete:
        return baseline  # protection mode baselines are frozen

    stamp = iso_now(now)
    processes = list(baseline.normal_processes)
    connections = list(baseline.normal_connections)
    logins = list(baseline.normal_login_patterns)
    ports = list(baseline.normal_service_ports)

    name = _process_name(event)
    if name is not None:
        idx = next((i for i, p in enumerate(processes) if p.name == name), None)
        if idx is None:
            path = event.meta("processPath")
            processes.append(
                ProcessPattern(name, str(path) if path else None, 1, stamp, stamp)
            )
        else:
            old = processes[idx]
            processes[idx] = replace(old, frequency=old.frequency + 1, last_seen=stamp)

    addr = _remote_address(event)
    if addr is not None:
        rport = _int_or(event.meta("remotePort"), 0)
        idx = next(
            (
                i
                for i, c in enumerate(connections)
                if c.remote_address == addr and c.remote_port == rport
            ),
            None,
        )
        if idx is None:
            proto = str(event.meta("protocol") or "tcp")
            connections.append(ConnectionPattern(addr, rport, proto, 1, stamp, stamp))
        else:
            old_c = connections[idx]
            connections[idx] = replace(old_c, frequency=old_c.frequency + 1, last_seen=stamp)

    port = _listening_port(event)
    if port is not None:
        idx = next((i for i, p in enumerate(ports) if p.port == port), None)
        if idx is None:
            service = event.meta("service", "processName")
            ports.append(PortPattern(port, str(service) if service else None, 1, stamp, stamp))
        else:
            old_p = ports[idx]
            ports[idx] = replace(old_p, frequency=old_p.frequency + 1, last_seen=stamp)

    user = _username(event)
    if user is not None:
        idx = next((i for i, lp in enumerate(logins) if lp.username == user), None)
        if idx is None:
            when = _event_time(event)
            src = event.meta("sourceIP")
            logins.append(
                LoginPattern(
                    username=user,
                    source_ip=str(src) if src else None,
                    hour_of_day=when.hour,
                    day_of_week=when.weekday(),
                    frequency=1,
                    first_seen=stamp,
                    last_seen=stamp,
                )
            )
        else:
            old_l = logins[idx]
            logins[idx] = replace(old_l, frequency=old_l.frequency + 1, last_seen=stamp)

    count = baseline.event_count + 1
    updated = replace(
        baseline,
        normal_processes=tuple(processes),
        normal_connections=tuple(connections),
        normal_login_patterns=tuple(logins),
        normal_service_ports=tuple(ports),
        event_count=count,
        confidence_level=calculate_confidence(count),
        last_updated=stamp,
    )
    log.debug(
        f"Baseline updated: {event.source}/{event.category} "
        f"(events: {count}, confidence: {updated.confidence_level * 100:.1f}%)"
    )
    return updated
