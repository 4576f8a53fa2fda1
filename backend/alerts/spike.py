"""
Spike detection over velocity history.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from pydantic import BaseModel, Field

from aggregator import VelocitySnapshot

DEFAULT_SPIKE_THRESHOLD = 300.0

# Used when the baseline is zero and a ratio is meaningless
ABSOLUTE_SPIKE_COUNT = 10
ABSOLUTE_MEDIUM_COUNT = 20
ABSOLUTE_HIGH_COUNT = 50


class SpikeSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SpikeDetectionResult(BaseModel):
    is_spike: bool = Field(description="Whether the current cycle is a spike")
    severity: SpikeSeverity = Field(default=SpikeSeverity.LOW)
    percentage_increase: float = Field(default=0.0, description="Increase over baseline, percent")
    current_count: int = Field(default=0)
    average_count: float = Field(default=0.0, description="Mean count excluding the current snapshot")


def _severity_for_increase(percentage_increase: float) -> SpikeSeverity:
    if percentage_increase >= 500:
        return SpikeSeverity.CRITICAL
    if percentage_increase >= 400:
        return SpikeSeverity.HIGH
    if percentage_increase >= 300:
        return SpikeSeverity.MEDIUM
    return SpikeSeverity.LOW


def _severity_for_count(count: int) -> SpikeSeverity:
    if count > ABSOLUTE_HIGH_COUNT:
        return SpikeSeverity.HIGH
    if count > ABSOLUTE_MEDIUM_COUNT:
        return SpikeSeverity.MEDIUM
    return SpikeSeverity.LOW


def detect_spike(
    history: Sequence[VelocitySnapshot],
    threshold_percent: float = DEFAULT_SPIKE_THRESHOLD
) -> SpikeDetectionResult:
    """
    Classify the most recent snapshot against the rest of the history.

    Args:
        history: Snapshots, oldest first
        threshold_percent: Minimum increase over the baseline to count as a spike

    Returns:
        SpikeDetectionResult. Fewer than two snapshots is never a spike.
        With a zero baseline an absolute count heuristic is used and
        percentage_increase stays 0.0.
    """
    if len(history) < 2:
        current = history[-1].count if history else 0
        return SpikeDetectionResult(
            is_spike=False,
            current_count=current,
            average_count=float(current),
        )

    current = history[-1].count
    baseline = [s.count for s in history[:-1]]
    average = sum(baseline) / len(baseline)

    if average == 0:
        return SpikeDetectionResult(
            is_spike=current > ABSOLUTE_SPIKE_COUNT,
            severity=_severity_for_count(current),
            percentage_increase=0.0,
            current_count=current,
            average_count=0.0,
        )

    increase = (current - average) / average * 100
    return SpikeDetectionResult(
        is_spike=increase >= threshold_percent,
        severity=_severity_for_increase(increase),
        percentage_increase=increase,
        current_count=current,
        average_count=average,
    )


__all__ = [
    "DEFAULT_SPIKE_THRESHOLD",
    "SpikeDetectionResult",
    "SpikeSeverity",
    "detect_spike",
]
