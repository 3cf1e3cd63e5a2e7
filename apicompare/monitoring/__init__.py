"""Monitoring and telemetry module for comparison passes."""

from apicompare.monitoring.comparison import (
    ComparisonLogger,
    ComparisonMetricsPublisher,
    ComparisonOutcome,
    ComparisonStatus,
    PassSummary,
)

__all__ = [
    "ComparisonLogger",
    "ComparisonMetricsPublisher",
    "ComparisonOutcome",
    "ComparisonStatus",
    "PassSummary",
]
