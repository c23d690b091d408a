# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: shared data model for the guard pipeline. an upstream classifier turns an Event into a
ThreatVerdict; the respond engine turns the verdict into a ResponseResult; the report engine
writes all three into the audit log as one ReportRecord and may derive AnonymizedThreatData.
every value here is a frozen dataclass with to_dict()/from_dict() so it can round-trip through
the JSON-lines log without a schema library.

evidence carries an open data bag that attackers can influence. the responders never read it
directly; they go through extract_target(), which returns a Target with an explicit `found`
flag so "missing" can never be confused with a falsy value like pid 0.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import time  # for timestamps when none are supplied
from collections.abc import Mapping  # type hint for read-only dict-like payloads
from dataclasses import dataclass, field  # frozen value types
from datetime import datetime, timezone  # for ISO-8601 timestamps
from enum import Enum  # for the extraction target kinds
from typing import Any  # type hint for flexible dictionary values

CONCLUSIONS = ("benign", "suspicious", "malicious")
ACTIONS = (
    "block_ip",
    "kill_process",
    "disable_account",
    "isolate_file",
    "notify",
    "log_only",
)


def iso_now(ts: float | None = None) -> str:
    # UTC ISO-8601 string, millisecond precision is plenty for audit records
    stamp = time.time() if ts is None else ts
    return datetime.fromtimestamp(stamp, tz=timezone.utc).isoformat(timespec="milliseconds")


def parse_iso(value: Any) -> datetime | None:
    """parse an ISO-8601 string into an aware datetime, None if it is not one"""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):  # fromisoformat on older interpreters rejects the Z suffix
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:  # naive timestamps are treated as UTC
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Event:
    id: str
    timestamp: str
    source: str  # subsystem that produced it (process, network, auth, file, ...)
    severity: str
    category: str
    description: str = ""
    raw: Any = None
    host: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def meta(self, *keys: str) -> Any:
        # first non-empty metadata value among the given keys
        for key in keys:
            value = self.metadata.get(key)
            if value is not None and value != "":
                return value
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "source": self.source,
            "severity": self.severity,
            "category": self.category,
            "description": self.description,
            "raw": self.raw,
            "host": self.host,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        return cls(
            id=str(data.get("id", "")),
            timestamp=str(data.get("timestamp") or iso_now()),
            source=str(data.get("source", "")),
            severity=str(data.get("severity", "info")),
            category=str(data.get("category", "")),
            description=str(data.get("description", "")),
            raw=data.get("raw"),
            host=str(data.get("host", "")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class Evidence:
    source: str  # e.g. "rule_match", "baseline_deviation"
    description: str = ""
    confidence: float = 0.0
    data: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "description": self.description,
            "confidence": self.confidence,
            "data": dict(self.data) if self.data is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Evidence:
        payload = data.get("data")
        return cls(
            source=str(data.get("source", "")),
            description=str(data.get("description", "")),
            confidence=float(data.get("confidence") or 0.0),
            data=dict(payload) if isinstance(payload, Mapping) else None,
        )


@dataclass(frozen=True)
class ThreatVerdict:
    conclusion: str  # benign | suspicious | malicious
    confidence: float  # 0-100, assigned by the producer and never recomputed here
    reasoning: str = ""
    evidence: tuple[Evidence, ...] = ()
    recommended_action: str = "log_only"
    mitre_technique: str | None = None

    def __post_init__(self) -> None:
        # callers often pass a list; keep the stored value immutable
        if not isinstance(self.evidence, tuple):
            object.__setattr__(self, "evidence", tuple(self.evidence))

    @property
    def is_benign(self) -> bool:
        return self.conclusion == "benign"

    def to_dict(self) -> dict[str, Any]:
        return {
            "conclusion": self.conclusion,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "evidence": [e.to_dict() for e in self.evidence],
            "recommended_action": self.recommended_action,
            "mitre_technique": self.mitre_technique,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ThreatVerdict:
        return cls(
            conclusion=str(data.get("conclusion", "benign")),
            confidence=float(data.get("confidence") or 0.0),
            reasoning=str(data.get("reasoning", "")),
            evidence=tuple(
                Evidence.from_dict(e) for e in data.get("evidence") or [] if isinstance(e, Mapping)
            ),
            recommended_action=str(data.get("recommended_action", "log_only")),
            mitre_technique=data.get("mitre_technique"),
        )


@dataclass(frozen=True)
class ResponseResult:
    action: str
    success: bool
    details: str = ""
    timestamp: str = field(default_factory=iso_now)
    target: str | None = None  # the IP/PID/username/path acted upon

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "details": self.details,
            "timestamp": self.timestamp,
            "target": self.target,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResponseResult:
        target = data.get("target")
        return cls(
            action=str(data.get("action", "log_only")),
            success=bool(data.get("success", False)),
            details=str(data.get("details", "")),
            timestamp=str(data.get("timestamp") or iso_now()),
            target=str(target) if target is not None else None,
        )


@dataclass(frozen=True)
class ReportRecord:
    event: Event
    verdict: ThreatVerdict
    response: ResponseResult
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "verdict": self.verdict.to_dict(),
            "response": self.response.to_dict(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ReportRecord:
        # raises on records missing a section; callers scanning the log treat that as malformed
        for key in ("event", "verdict", "response"):
            if not isinstance(data.get(key), Mapping):
                raise ValueError(f"report record is missing '{key}'")
        return cls(
            event=Event.from_dict(data["event"]),
            verdict=ThreatVerdict.from_dict(data["verdict"]),
            response=ResponseResult.from_dict(data["response"]),
            timestamp=str(data.get("timestamp", "")),
        )


@dataclass(frozen=True)
class AnonymizedThreatData:
    ip: str
    attack_type: str
    mitre_technique: str
    sigma_rule_matched: str
    timestamp: str
    region: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "attack_type": self.attack_type,
            "mitre_technique": self.mitre_technique,
            "sigma_rule_matched": self.sigma_rule_matched,
            "timestamp": self.timestamp,
            "region": self.region,
        }


# --- extraction targets ---


class TargetKind(Enum):
    IP = "ip"
    PID = "pid"
    USERNAME = "username"
    FILE_PATH = "filePath"
    PROCESS_NAME = "processName"

    @property
    def key(self) -> str:
        return self.value  # the evidence data key this kind is read from


@dataclass(frozen=True)
class Target:
    kind: TargetKind
    value: Any = None
    found: bool = False

    def __str__(self) -> str:
        return "" if not self.found else str(self.value)


def extract_target(verdict: ThreatVerdict, kind: TargetKind) -> Target:
    """first evidence item whose data carries the key wins; evidence order is preserved"""
    for ev in verdict.evidence:
        if ev.data is None:
            continue
        value = ev.data.get(kind.key)
        if value is None:
            continue
        return Target(kind=kind, value=value, found=True)
    return Target(kind=kind)
