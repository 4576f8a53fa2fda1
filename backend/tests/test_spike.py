"""
Unit tests for spike detection.
"""

import pytest
from datetime import datetime, timezone, timedelta

from aggregator import VelocityAggregator, VelocitySnapshot
from alerts.spike import SpikeSeverity, detect_spike


def make_history(counts):
    """Build a snapshot history (oldest first) from a list of counts."""
    start = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
    return [
        VelocitySnapshot(timestamp=start + timedelta(minutes=i), count=count)
        for i, count in enumerate(counts)
    ]


class TestShortHistory:
    """Histories with fewer than two snapshots are never spikes."""

    def test_empty_history(self):
        result = detect_spike([])

        assert result.is_spike is False
        assert result.severity == SpikeSeverity.LOW
        assert result.current_count == 0

    def test_single_snapshot_reports_its_count(self):
        result = detect_spike(make_history([500]))

        assert result.is_spike is False
        assert result.severity == SpikeSeverity.LOW
        assert result.current_count == 500
        assert result.average_count == 500


class TestRelativeIncrease:
    """Increase measured against the mean of all but the latest snapshot."""

    def test_baseline_excludes_current(self):
        result = detect_spike(make_history([10, 10, 10, 40]))

        assert result.average_count == 10
        assert result.percentage_increase == pytest.approx(300.0)
        assert result.severity == SpikeSeverity.MEDIUM
        assert result.is_spike is True

    def test_critical_burst(self):
        result = detect_spike(make_history([5, 5, 50]))

        assert result.average_count == 5
        assert result.percentage_increase == pytest.approx(900.0)
        assert result.severity == SpikeSeverity.CRITICAL
        assert result.is_spike is True

    def test_high_severity(self):
        result = detect_spike(make_history([10, 50]))

        assert result.percentage_increase == pytest.approx(400.0)
        assert result.severity == SpikeSeverity.HIGH

    def test_below_threshold(self):
        result = detect_spike(make_history([10, 10, 30]))

        assert result.percentage_increase == pytest.approx(200.0)
        assert result.severity == SpikeSeverity.LOW
        assert result.is_spike is False

    def test_custom_threshold(self):
        history = make_history([10, 10, 30])

        assert detect_spike(history, threshold_percent=150).is_spike is True
        assert detect_spike(history, threshold_percent=250).is_spike is False

    def test_decrease_is_not_spike(self):
        result = detect_spike(make_history([40, 40, 10]))

        assert result.percentage_increase < 0
        assert result.is_spike is False


class TestZeroBaseline:
    """A zero baseline switches to absolute counts and reports no percentage."""

    def test_small_count_is_not_spike(self):
        result = detect_spike(make_history([0, 0, 10]))

        assert result.is_spike is False
        assert result.percentage_increase == 0.0
        assert result.severity == SpikeSeverity.LOW

    def test_count_above_ten_is_spike(self):
        result = detect_spike(make_history([0, 11]))

        assert result.is_spike is True
        assert result.severity == SpikeSeverity.LOW
        assert result.percentage_increase == 0.0

    def test_medium_and_high_tiers(self):
        assert detect_spike(make_history([0, 21])).severity == SpikeSeverity.MEDIUM
        assert detect_spike(make_history([0, 0, 51])).severity == SpikeSeverity.HIGH


def test_detect_on_aggregator_history():
    """Spike detection over a ring buffer fed cycle by cycle."""
    aggregator = VelocityAggregator(capacity=60)
    for count in [5, 5, 50]:
        aggregator.record(count, sentiment_avg=0.0)

    result = detect_spike(aggregator.history())

    assert result.is_spike is True
    assert result.severity == SpikeSeverity.CRITICAL
    assert result.current_count == 50
