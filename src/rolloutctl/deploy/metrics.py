"""Deployment history and fleet-level KPIs.

History is the only stored state; every KPI is recomputed from it on request.
"""

import threading
from datetime import datetime, timedelta
from statistics import mean
from typing import Iterable

from rolloutctl.core.clock import Clock, SystemClock
from rolloutctl.core.exceptions import ValidationError
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.models import (
    CanaryDeployment,
    CanaryStatus,
    DeploymentKind,
    DeploymentMetrics,
    DeploymentOutcome,
    DeploymentRecord,
    Environment,
    Pipeline,
    PipelineStatus,
)

logger = StructuredLogger(__name__)

_MS_PER_MINUTE = 60_000

_CANARY_OUTCOMES = {
    CanaryStatus.SUCCESS: DeploymentOutcome.SUCCESS,
    CanaryStatus.FAILED: DeploymentOutcome.FAILED,
    CanaryStatus.ROLLBACK: DeploymentOutcome.ROLLBACK,
}


def _recovery_gaps(
    records: list[DeploymentRecord],
    now: datetime,
) -> list[tuple[Environment, datetime, datetime, bool]]:
    """Spans from the first unsuccessful deployment to the next success per environment.

    Returns ``(environment, start, end, recovered)`` tuples; spans still open at
    ``now`` end there with ``recovered=False``.
    """
    open_since: dict[Environment, datetime] = {}
    gaps = []
    for record in records:
        env = record.environment
        if record.outcome == DeploymentOutcome.SUCCESS:
            if env in open_since:
                gaps.append((env, open_since.pop(env), record.ended_at, True))
        elif env not in open_since:
            open_since[env] = record.ended_at
    for env, start in open_since.items():
        gaps.append((env, start, now, False))
    return gaps


def compute_metrics(
    history: Iterable[DeploymentRecord],
    window_days: float,
    now: datetime,
) -> DeploymentMetrics:
    """Compute KPIs over the records that ended inside the window.

    Records stamped after ``now`` still count; simulated pipeline time may run
    ahead of the wall clock. An empty window yields zeros with 100% uptime.

    Args:
        history: Deployment records, in any order
        window_days: Window length ending at ``now``
        now: End of the window

    Returns:
        Derived DeploymentMetrics
    """
    if window_days <= 0:
        raise ValidationError("window_days must be positive", {"window_days": window_days})

    window = timedelta(days=window_days)
    window_start = now - window
    records = sorted(
        (r for r in history if r.ended_at >= window_start),
        key=lambda r: r.ended_at,
    )

    total = len(records)
    if total == 0:
        return DeploymentMetrics()

    successes = sum(1 for r in records if r.outcome == DeploymentOutcome.SUCCESS)
    rollbacks = sum(1 for r in records if r.outcome == DeploymentOutcome.ROLLBACK)
    durations = [r.duration_ms for r in records if r.duration_ms is not None]
    deltas = [r.performance_delta_percent for r in records if r.performance_delta_percent is not None]

    gaps = _recovery_gaps(records, now)
    recovered = [(end - start).total_seconds() * 1000 for _, start, end, done in gaps if done]
    downtime_ms = sum(
        max(0.0, (end - max(start, window_start)).total_seconds() * 1000)
        for env, start, end, _ in gaps
        if env == Environment.PRODUCTION
    )
    window_ms = window.total_seconds() * 1000

    return DeploymentMetrics(
        total_deployments=total,
        success_rate_percent=successes / total * 100,
        avg_deployment_time_minutes=mean(durations) / _MS_PER_MINUTE if durations else 0.0,
        mean_time_to_recovery_minutes=mean(recovered) / _MS_PER_MINUTE if recovered else 0.0,
        deployment_frequency_per_day=total / window_days,
        rollback_rate_percent=rollbacks / total * 100,
        uptime_percent=max(0.0, min(100.0, 100.0 - downtime_ms / window_ms * 100)),
        performance_impact_percent=mean(deltas) if deltas else 0.0,
    )


class DeploymentMetricsAggregator:
    """Append-only deployment history.

    Writers append under a lock; readers get a tuple snapshot and never see a
    half-written list.
    """

    def __init__(self, clock: Clock | None = None, records: Iterable[DeploymentRecord] = ()):
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._records: list[DeploymentRecord] = []
        self._ids: set[str] = set()
        self.load(records)

    def load(self, records: Iterable[DeploymentRecord]) -> int:
        """Append previously persisted records, skipping known ids.

        Returns:
            Number of records added
        """
        return sum(1 for record in records if self._append(record, quiet=True) is not None)

    def history(self) -> tuple[DeploymentRecord, ...]:
        """Snapshot of every record so far."""
        with self._lock:
            return tuple(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def record_completion(self, pipeline: Pipeline) -> DeploymentRecord | None:
        """Append a finished pipeline.

        Returns:
            The new record, or None if this pipeline was already recorded
        """
        if not pipeline.is_terminal:
            raise ValidationError(
                f"Pipeline {pipeline.id} is {pipeline.status.value}; only finished pipelines are recorded",
                {"id": pipeline.id},
            )
        outcome = (
            DeploymentOutcome.SUCCESS
            if pipeline.status == PipelineStatus.SUCCESS
            else DeploymentOutcome.FAILED
        )
        record = DeploymentRecord(
            entity_id=pipeline.id,
            kind=DeploymentKind.PIPELINE,
            name=pipeline.name,
            environment=pipeline.environment,
            outcome=outcome,
            started_at=pipeline.start_time,
            ended_at=pipeline.end_time or self._clock.now(),
            duration_ms=pipeline.duration_ms,
        )
        return self._append(record)

    def record_canary(
        self,
        canary: CanaryDeployment,
        environment: Environment = Environment.PRODUCTION,
    ) -> DeploymentRecord | None:
        """Append a finished canary rollout."""
        if not canary.is_terminal:
            raise ValidationError(
                f"Canary {canary.id} is {canary.status.value}; only finished canaries are recorded",
                {"id": canary.id},
            )
        delta = None
        if canary.baseline_response_time_ms > 0:
            delta = (
                (canary.metrics.response_time_ms - canary.baseline_response_time_ms)
                / canary.baseline_response_time_ms
                * 100
            )
        record = DeploymentRecord(
            entity_id=canary.id,
            kind=DeploymentKind.CANARY,
            name=canary.name,
            environment=environment,
            outcome=_CANARY_OUTCOMES[canary.status],
            started_at=canary.started_at,
            ended_at=canary.completed_at or self._clock.now(),
            duration_ms=canary.duration_ms,
            performance_delta_percent=delta,
        )
        return self._append(record)

    def compute_metrics(self, window_days: float, now: datetime | None = None) -> DeploymentMetrics:
        """KPIs over the last ``window_days`` of history."""
        return compute_metrics(self.history(), window_days, now or self._clock.now())

    def _append(self, record: DeploymentRecord, quiet: bool = False) -> DeploymentRecord | None:
        with self._lock:
            if record.entity_id in self._ids:
                return None
            self._ids.add(record.entity_id)
            self._records.append(record)
        if quiet:
            return record
        logger.debug(
            "Deployment recorded",
            id=record.entity_id,
            kind=record.kind.value,
            outcome=record.outcome.value,
        )
        return record
