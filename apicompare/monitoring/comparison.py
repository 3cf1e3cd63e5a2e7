"""
Comparison Telemetry Module

Structured outcome logging and optional CloudWatch metrics for comparison
passes between the reference and the candidate node.

- One JSON line per operation per pass (height, operation, status, divergence)
- One JSON summary line per pass
- Per-pass metrics published to the apicompare/comparison namespace
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import boto3

from apicompare.exceptions import DivergenceError
from apicompare.utils.logger import get_logger


def _get_iso_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ComparisonStatus(Enum):
    """Comparison status codes."""

    MATCH = "match"
    MISMATCH = "mismatch"
    ERROR = "error"


@dataclass
class ComparisonOutcome:
    """Result of one operation at one checkpoint."""

    operation: str
    height: int
    status: ComparisonStatus
    details: str = ""
    error_type: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: str = field(default_factory=_get_iso_timestamp)

    @classmethod
    def from_error(
        cls, operation: str, height: int, error: Optional[BaseException], duration_ms: float
    ) -> "ComparisonOutcome":
        """
        Classify an operation's result.

        DivergenceError counts as a mismatch; any other exception counts as
        an error.
        """
        if error is None:
            return cls(operation, height, ComparisonStatus.MATCH, duration_ms=duration_ms)

        status = (
            ComparisonStatus.MISMATCH
            if isinstance(error, DivergenceError)
            else ComparisonStatus.ERROR
        )
        return cls(
            operation,
            height,
            status,
            details=str(error),
            error_type=type(error).__name__,
            duration_ms=duration_ms,
        )

    @property
    def match(self) -> bool:
        return self.status == ComparisonStatus.MATCH

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class PassSummary:
    """Counts for one comparison pass. Individual outcomes are not retained."""

    height: int
    operations: int = 0
    matched: int = 0
    mismatches: int = 0
    error_count: int = 0
    processing_duration_ms: float = 0.0
    started_at: str = field(default_factory=_get_iso_timestamp)

    def record(self, outcome: ComparisonOutcome) -> None:
        self.operations += 1
        if outcome.status == ComparisonStatus.MATCH:
            self.matched += 1
        elif outcome.status == ComparisonStatus.MISMATCH:
            self.mismatches += 1
        else:
            self.error_count += 1

    @property
    def failures(self) -> int:
        return self.mismatches + self.error_count

    def calculate_match_percentage(self) -> float:
        """Calculate overall match percentage."""
        if self.operations == 0:
            return 100.0
        return (self.matched / self.operations) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["match_percentage"] = round(self.calculate_match_percentage(), 2)
        data["processing_duration_ms"] = round(self.processing_duration_ms, 2)
        return data


class ComparisonMetricsPublisher:
    """
    Publishes per-pass comparison metrics to CloudWatch.

    - match_percentage: Share of operations whose results matched
    - divergences: Number of mismatching operations
    - error_count: Number of operations that failed with an error
    - pass_duration_ms: Wall time of the pass
    """

    NAMESPACE = "apicompare/comparison"

    def __init__(self, region_name: str = "us-east-1", cloudwatch_client: Any = None):
        """
        Initialize metrics publisher.

        Args:
            region_name: AWS region for CloudWatch
            cloudwatch_client: Pre-built client (defaults to boto3.client("cloudwatch"))
        """
        self.region_name = region_name
        self.cloudwatch_client = cloudwatch_client or boto3.client(
            "cloudwatch", region_name=region_name
        )
        self.logger = get_logger(__name__).logger

    def publish_pass_summary(self, summary: PassSummary) -> None:
        """
        Publish pass summary metrics to CloudWatch.

        Failures are logged but not raised: metrics publishing never aborts
        the comparison loop.
        """
        try:
            match_percentage = summary.calculate_match_percentage()
            timestamp = datetime.now(timezone.utc)
            dimensions = [{"Name": "Operations", "Value": str(summary.operations)}]

            metric_data = [
                {
                    "MetricName": "match_percentage",
                    "Value": match_percentage,
                    "Unit": "Percent",
                    "Timestamp": timestamp,
                    "Dimensions": dimensions,
                },
                {
                    "MetricName": "divergences",
                    "Value": summary.mismatches,
                    "Unit": "Count",
                    "Timestamp": timestamp,
                    "Dimensions": dimensions,
                },
                {
                    "MetricName": "error_count",
                    "Value": summary.error_count,
                    "Unit": "Count",
                    "Timestamp": timestamp,
                    "Dimensions": dimensions,
                },
                {
                    "MetricName": "pass_duration_ms",
                    "Value": summary.processing_duration_ms,
                    "Unit": "Milliseconds",
                    "Timestamp": timestamp,
                    "Dimensions": dimensions,
                },
            ]

            self.cloudwatch_client.put_metric_data(Namespace=self.NAMESPACE, MetricData=metric_data)
            self.logger.info(
                f"Comparison metrics published for height {summary.height}: "
                f"match_percentage={match_percentage:.1f}%, divergences={summary.mismatches}"
            )

        except Exception as e:
            self.logger.error(f"Failed to publish comparison metrics: {e}")


class ComparisonLogger:
    """
    Structured logger for comparison outcomes.

    Each line is a standalone JSON object so the stream can be filtered by
    operation, height or status.
    """

    def __init__(self, candidate_name: str = "candidate"):
        self.candidate_name = candidate_name
        self.logger = get_logger(__name__).logger

    def log_outcome(self, outcome: ComparisonOutcome) -> None:
        log_entry = {
            "timestamp": outcome.timestamp,
            "level": "INFO" if outcome.match else "ERROR",
            "event_type": "operation_comparison",
            "candidate": self.candidate_name,
            "height": outcome.height,
            "operation": outcome.operation,
            "status": outcome.status.value,
            "duration_ms": round(outcome.duration_ms, 2),
        }
        if not outcome.match:
            log_entry["divergence"] = outcome.details
            log_entry["error_type"] = outcome.error_type

        message = json.dumps(log_entry, ensure_ascii=False)
        if outcome.match:
            self.logger.info(message)
        else:
            self.logger.error(message)

    def log_summary(self, summary: PassSummary) -> None:
        log_entry = {
            "timestamp": _get_iso_timestamp(),
            "level": "INFO",
            "event_type": "comparison_summary",
            "candidate": self.candidate_name,
        }
        log_entry.update(summary.to_dict())
        self.logger.info(json.dumps(log_entry, ensure_ascii=False))
