"""
Tests for memory.learning - learning -> protection state machine
"""

from __future__ import annotations

import pytest

from memory.baseline import create_empty_baseline, update_baseline
from memory.learning import (
    SECONDS_PER_DAY,
    baseline_summary,
    is_learning_complete,
    learning_progress,
    remaining_days,
    switch_to_protection_mode,
)

START = 1_700_000_000.0


@pytest.fixture
def baseline():
    """Baseline whose learning started at START"""
    return create_empty_baseline(now=START)


class TestLearningProgress:
    """Tests for progress and remaining days"""

    def test_not_complete_at_start(self, baseline):
        """Test that a fresh baseline is still learning"""
        assert is_learning_complete(baseline, 7, now=START) is False
        assert learning_progress(baseline, 7, now=START) == 0
        assert remaining_days(baseline, 7, now=START) == 7

    def test_halfway(self, baseline):
        """Test progress halfway through the period"""
        now = START + 3.5 * SECONDS_PER_DAY
        assert learning_progress(baseline, 7, now=now) == 50
        assert remaining_days(baseline, 7, now=now) == 4  # ceil(3.5)

    def test_complete_after_period(self, baseline):
        """Test completion once elapsed >= learning days"""
        now = START + 7 * SECONDS_PER_DAY
        assert is_learning_complete(baseline, 7, now=now) is True
        assert learning_progress(baseline, 7, now=now) == 100
        assert remaining_days(baseline, 7, now=now) == 0

    def test_clamped_beyond_period(self, baseline):
        """Test that progress and remaining days are clamped"""
        now = START + 30 * SECONDS_PER_DAY
        assert learning_progress(baseline, 7, now=now) == 100
        assert remaining_days(baseline, 7, now=now) == 0

    def test_clock_before_start_is_clamped(self, baseline):
        """Test that a clock behind the start time does not go negative"""
        assert learning_progress(baseline, 7, now=START - 1000) == 0
        assert remaining_days(baseline, 7, now=START - 1000) == 7


class TestSwitchToProtection:
    """Tests for switch_to_protection_mode"""

    def test_returns_new_value(self, baseline):
        """Test that switching does not mutate the input"""
        switched = switch_to_protection_mode(baseline, now=START + 10)
        assert baseline.learning_complete is False
        assert switched.learning_complete is True
        assert switched.last_updated != baseline.last_updated

    def test_explicit_switch_completes_early(self, baseline):
        """Test that an operator switch completes learning regardless of time"""
        switched = switch_to_protection_mode(baseline)
        assert is_learning_complete(switched, 7, now=START) is True
        assert remaining_days(switched, 7, now=START) == 0

    def test_never_reverts(self, baseline, make_event):
        """Test that the flag stays true through further updates and switches"""
        b = switch_to_protection_mode(baseline)
        b = update_baseline(b, make_event(processName="x"))
        b = switch_to_protection_mode(b)
        assert b.learning_complete is True


class TestBaselineSummary:
    """Tests for baseline_summary"""

    def test_counts(self, baseline, make_event):
        """Test that the summary counts each pattern list"""
        b = update_baseline(baseline, make_event(processName="a", listeningPort=22))
        b = update_baseline(b, make_event("network", remoteAddress="1.1.1.1"))
        s = baseline_summary(b)
        assert s.process_count == 1
        assert s.connection_count == 1
        assert s.port_count == 1
        assert s.login_pattern_count == 0
        assert s.event_count == 2
        assert s.learning_complete is False
        assert s.to_dict()["event_count"] == 2

    def test_read_only(self, baseline):
        """Test that the summary has no side effects"""
        before = baseline.to_dict()
        baseline_summary(baseline)
        assert baseline.to_dict() == before
