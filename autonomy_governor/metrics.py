"""
Autonomy Metrics Aggregator
===========================

Computes a tenant's performance snapshot over a trailing window from the
task records held by the Task Store.

Rates:
- approval_rate   = approved / total
- error_rate      = failed / total
- escalation_rate = escalated / total
- rejection_rate  = rejected / (approved + rejected)
- response_rate   = responded / tasks that track a candidate response

Every rate is 0 when its denominator is 0 and is clamped to [0, 1].

Usage:
    from autonomy_governor.metrics import MetricsAggregator, MetricsPeriod

    aggregator = MetricsAggregator(task_store)
    metrics = await aggregator.calculate_metrics("tenant-1", MetricsPeriod.WEEK)
    print(f"Approval rate: {metrics.approval_rate:.0%}")
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Protocol

from autonomy_governor.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class MetricsPeriod(Enum):
    """Trailing window lengths, in days."""
    DAY = 1
    WEEK = 7
    MONTH = 30

    @property
    def delta(self) -> timedelta:
        return timedelta(days=self.value)

    @classmethod
    def parse(cls, value: "str | MetricsPeriod") -> "MetricsPeriod":
        if isinstance(value, MetricsPeriod):
            return value
        return cls[str(value).strip().upper()]


class TaskStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"   # approved and carried out
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class TaskRecord:
    """A unit of agent work as seen by the metrics window."""
    id: str
    tenant_id: str
    task_type: str
    status: TaskStatus
    created_at: datetime
    approved_at: Optional[datetime] = None
    escalation_reason: Optional[str] = None
    # None when the task does not track a candidate response
    response_received: Optional[bool] = None
    is_complaint: bool = False


class TaskStore(Protocol):
    async def query_tasks(self, tenant_id: str, since: datetime) -> list[TaskRecord]: ...


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _ratio(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return _clamp(numerator / denominator)


@dataclass
class AutonomyMetrics:
    """Performance snapshot for one tenant over one window."""
    tenant_id: str
    period: MetricsPeriod
    window_start: datetime
    window_end: datetime

    total_tasks: int = 0
    approved_tasks: int = 0
    rejected_tasks: int = 0
    escalated_tasks: int = 0
    failed_tasks: int = 0
    pending_tasks: int = 0
    complaints: int = 0

    responded: int = 0
    response_samples: int = 0

    average_approval_minutes: Optional[float] = None

    @property
    def approval_rate(self) -> float:
        return _ratio(self.approved_tasks, self.total_tasks)

    @property
    def error_rate(self) -> float:
        return _ratio(self.failed_tasks, self.total_tasks)

    @property
    def escalation_rate(self) -> float:
        return _ratio(self.escalated_tasks, self.total_tasks)

    @property
    def rejection_rate(self) -> float:
        return _ratio(self.rejected_tasks, self.approved_tasks + self.rejected_tasks)

    @property
    def response_rate(self) -> float:
        return _ratio(self.responded, self.response_samples)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "period": self.period.name.lower(),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "total_tasks": self.total_tasks,
            "approved_tasks": self.approved_tasks,
            "rejected_tasks": self.rejected_tasks,
            "escalated_tasks": self.escalated_tasks,
            "failed_tasks": self.failed_tasks,
            "pending_tasks": self.pending_tasks,
            "complaints": self.complaints,
            "response_samples": self.response_samples,
            "response_rate": self.response_rate,
            "average_approval_minutes": self.average_approval_minutes,
            "approval_rate": self.approval_rate,
            "error_rate": self.error_rate,
            "escalation_rate": self.escalation_rate,
            "rejection_rate": self.rejection_rate,
        }


def summarize_tasks(
    tenant_id: str,
    period: MetricsPeriod,
    tasks: list[TaskRecord],
    window_start: datetime,
    window_end: datetime,
) -> AutonomyMetrics:
    """Fold task records into an AutonomyMetrics snapshot."""
    metrics = AutonomyMetrics(
        tenant_id=tenant_id,
        period=period,
        window_start=window_start,
        window_end=window_end,
        total_tasks=len(tasks),
    )

    approval_minutes: list[float] = []
    for task in tasks:
        if task.status == TaskStatus.COMPLETED:
            metrics.approved_tasks += 1
            if task.approved_at is not None:
                approval_minutes.append((task.approved_at - task.created_at).total_seconds() / 60)
        elif task.status == TaskStatus.REJECTED:
            metrics.rejected_tasks += 1
        elif task.status == TaskStatus.FAILED:
            metrics.failed_tasks += 1
        elif task.status == TaskStatus.PENDING:
            metrics.pending_tasks += 1

        if task.escalation_reason:
            metrics.escalated_tasks += 1
        if task.is_complaint:
            metrics.complaints += 1
        if task.response_received is not None:
            metrics.response_samples += 1
            if task.response_received:
                metrics.responded += 1

    if approval_minutes:
        metrics.average_approval_minutes = sum(approval_minutes) / len(approval_minutes)

    return metrics


class MetricsAggregator:
    """Pulls task records and computes AutonomyMetrics."""

    def __init__(self, task_store: TaskStore):
        self._task_store = task_store

    async def calculate_metrics(
        self,
        tenant_id: str,
        period: MetricsPeriod = MetricsPeriod.WEEK,
    ) -> AutonomyMetrics:
        """
        Compute metrics for the trailing window ending now.

        Raises:
            ExternalServiceError: if the Task Store cannot be read
        """
        window_end = datetime.now(timezone.utc)
        window_start = window_end - period.delta

        try:
            tasks = await self._task_store.query_tasks(tenant_id, window_start)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise ExternalServiceError("task_store", str(e)) from e

        metrics = summarize_tasks(tenant_id, period, tasks, window_start, window_end)
        logger.debug(
            "Metrics for %s (%s): %d tasks, approval %.2f, error %.2f",
            tenant_id, period.name.lower(), metrics.total_tasks,
            metrics.approval_rate, metrics.error_rate,
        )
        return metrics
