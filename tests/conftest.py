from __future__ import annotations

import os
from typing import Any

import pytest
import requests

from core.models import Event, Evidence, ThreatVerdict, iso_now


def _env_url() -> str:
    return os.getenv("VIGILGUARD_BASE_URL", "http://127.0.0.1:8766").rstrip("/")


@pytest.fixture(scope="session")
def base_url() -> str:
    return _env_url()


@pytest.fixture(scope="session")
def http():
    """Simple requests wrapper with a short timeout."""

    class _HTTP:
        def get(self, url: str, **kw):
            kw.setdefault("timeout", 5)
            return requests.get(url, **kw)

    return _HTTP()


@pytest.fixture(scope="session")
def server_up(base_url: str, http):
    """Skip the test session if the status API isn't reachable."""
    try:
        r = http.get(f"{base_url}/api/ping")
        if r.status_code != 200:
            pytest.skip(f"Server reachable but non-200 from /api/ping: {r.status_code}")
    except Exception as exc:
        pytest.skip(f"Server not reachable at {base_url} ({exc})")


@pytest.fixture
def make_event():
    """Factory for events with a metadata bag"""
    counter = {"n": 0}

    def _make(source: str = "process", category: str = "execution", **metadata: Any) -> Event:
        counter["n"] += 1
        return Event(
            id=f"evt-{counter['n']}",
            timestamp=iso_now(),
            source=source,
            severity="medium",
            category=category,
            description=f"{source} event",
            raw=None,
            host="test-host",
            metadata=metadata,
        )

    return _make


@pytest.fixture
def make_verdict():
    """Factory for verdicts; evidence is a list of data dicts"""

    def _make(
        conclusion: str = "malicious",
        confidence: float = 96,
        action: str = "block_ip",
        evidence: list[dict[str, Any] | None] | None = None,
        mitre: str | None = None,
        source: str = "rule_match",
    ) -> ThreatVerdict:
        items = tuple(
            Evidence(source=source, description="test evidence", confidence=confidence, data=d)
            for d in (evidence or [])
        )
        return ThreatVerdict(
            conclusion=conclusion,
            confidence=confidence,
            reasoning="test verdict",
            evidence=items,
            recommended_action=action,
            mitre_technique=mitre,
        )

    return _make

