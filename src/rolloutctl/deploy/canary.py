"""Canary rollout controller."""

import random

from rolloutctl.config import HealthThresholds
from rolloutctl.core.clock import Clock, SystemClock
from rolloutctl.core.exceptions import InvalidTransition, ValidationError
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.models import (
    CanaryDeployment,
    CanaryMetrics,
    CanaryStatus,
    HealthCheck,
    HealthStatus,
    RampPolicy,
)

logger = StructuredLogger(__name__)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def classify(value: float, warning: float, critical: float) -> HealthStatus:
    """Below ``warning`` passes, above ``critical`` fails, otherwise warns."""
    if value < warning:
        return HealthStatus.PASS
    if value > critical:
        return HealthStatus.FAIL
    return HealthStatus.WARNING


def connectivity_message(error_percent: float) -> str:
    if round(error_percent, 2) <= 0:
        return "All connections healthy"
    return f"Connection failures: {error_percent:.2f}%"


def validate_ramp(ramp: RampPolicy) -> None:
    for name, value in (
        ("initial_percent", ramp.initial_percent),
        ("target_percent", ramp.target_percent),
    ):
        if not 0 <= value <= 100:
            raise ValidationError(f"Ramp {name} must be within [0, 100]", {name: value})
    if not 0 < ramp.step_percent <= 100:
        raise ValidationError("Ramp step_percent must be within (0, 100]", {"step_percent": ramp.step_percent})


class CanaryController:
    """Drives canary rollouts and evaluates their health.

    Health results are reported, never acted upon here; see
    ``AutoRollbackPolicy`` for the automatic decision.
    """

    def __init__(
        self,
        thresholds: HealthThresholds | None = None,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ):
        self._thresholds = thresholds or HealthThresholds()
        self._rng = rng or random.Random()
        self._clock = clock or SystemClock()

    @property
    def thresholds(self) -> HealthThresholds:
        return self._thresholds

    def create(
        self,
        name: str,
        current_version: str,
        target_version: str,
        ramp: RampPolicy | None = None,
        metrics: CanaryMetrics | None = None,
    ) -> CanaryDeployment:
        """Create a canary in ``preparing`` with the ramp's initial split."""
        ramp = ramp or RampPolicy()
        validate_ramp(ramp)
        for field_name, value in (
            ("name", name),
            ("current_version", current_version),
            ("target_version", target_version),
        ):
            if not value or not value.strip():
                raise ValidationError(f"Canary {field_name} must not be empty")

        canary = CanaryDeployment(
            name=name,
            current_version=current_version,
            target_version=target_version,
            ramp=ramp,
            traffic_split_percent=clamp(ramp.initial_percent, 0.0, 100.0),
            metrics=metrics or CanaryMetrics(),
            created_at=self._clock.now(),
        )
        canary.baseline_response_time_ms = canary.metrics.response_time_ms
        canary.health_checks = self.evaluate_health(canary)

        logger.info(
            "Canary created",
            id=canary.id,
            current=current_version,
            target=target_version,
            split=canary.traffic_split_percent,
        )
        return canary

    def start(self, canary: CanaryDeployment) -> CanaryDeployment:
        """Begin routing traffic to the canary."""
        self._require_status(canary, CanaryStatus.PREPARING, "start")
        canary.status = CanaryStatus.RUNNING
        canary.started_at = self._clock.now()
        logger.info("Canary started", id=canary.id, split=canary.traffic_split_percent)
        return canary

    def tick(self, canary: CanaryDeployment, elapsed_ms: float) -> CanaryDeployment:
        """Ramp traffic one step and drift live metrics.

        Only running canaries change. Every value is clamped before it is
        assigned.
        """
        if elapsed_ms < 0:
            raise ValidationError("elapsed_ms must not be negative", {"elapsed_ms": elapsed_ms})
        if canary.status != CanaryStatus.RUNNING:
            return canary

        canary.traffic_split_percent = self._ramp(canary)

        m = canary.metrics
        r = self._rng.random
        # error rate drifts down on average as the release stabilizes
        m.error_rate_percent = max(0.0, m.error_rate_percent + (r() - 0.7) * 0.1)
        m.response_time_ms = max(0.0, m.response_time_ms + (r() - 0.5) * 20)
        m.throughput_per_min = max(0.0, m.throughput_per_min + (r() - 0.5) * 100)
        m.memory_usage_percent = clamp(m.memory_usage_percent + (r() - 0.5) * 2, 0.0, 100.0)
        m.db_connection_error_percent = clamp(m.db_connection_error_percent + (r() - 0.7) * 0.02, 0.0, 100.0)
        m.user_satisfaction = clamp(m.user_satisfaction, 0.0, 5.0)

        logger.debug(
            "Canary ticked",
            id=canary.id,
            split=round(canary.traffic_split_percent, 1),
            error_rate=round(m.error_rate_percent, 3),
        )
        return canary

    def evaluate_health(self, canary: CanaryDeployment) -> list[HealthCheck]:
        """Health checks for the canary's current metrics.

        Pure function of the metrics and thresholds; the canary is not changed.
        """
        t = self._thresholds
        m = canary.metrics
        return [
            HealthCheck(
                name="API Response Time",
                status=classify(m.response_time_ms, t.response_time_warning_ms, t.response_time_critical_ms),
                message=f"Average response time: {m.response_time_ms:.0f}ms",
            ),
            HealthCheck(
                name="Error Rate",
                status=classify(m.error_rate_percent, t.error_rate_warning, t.error_rate_critical),
                message=f"Error rate: {m.error_rate_percent:.2f}%",
            ),
            HealthCheck(
                name="Memory Usage",
                status=classify(m.memory_usage_percent, t.memory_warning_percent, t.memory_critical_percent),
                message=f"Memory usage at {m.memory_usage_percent:.0f}%",
            ),
            HealthCheck(
                name="Database Connectivity",
                status=classify(
                    m.db_connection_error_percent,
                    t.db_connection_warning_percent,
                    t.db_connection_critical_percent,
                ),
                message=connectivity_message(m.db_connection_error_percent),
            ),
        ]

    def promote(self, canary: CanaryDeployment) -> CanaryDeployment:
        """Send all traffic to the target version."""
        self._require_status(canary, CanaryStatus.RUNNING, "promote")
        canary.traffic_split_percent = 100.0
        canary.status = CanaryStatus.SUCCESS
        canary.current_version = canary.target_version
        canary.completed_at = self._clock.now()
        canary.message = f"Promoted to {canary.target_version}"
        logger.info("Canary promoted", id=canary.id, version=canary.target_version)
        return canary

    def rollback(self, canary: CanaryDeployment, reason: str | None = None) -> CanaryDeployment:
        """Send all traffic back to the stable version. Always legal while running."""
        self._require_status(canary, CanaryStatus.RUNNING, "roll back")
        canary.traffic_split_percent = 0.0
        canary.status = CanaryStatus.ROLLBACK
        canary.completed_at = self._clock.now()
        canary.message = reason or f"Rolled back to {canary.current_version}"
        logger.info("Canary rolled back", id=canary.id, reason=canary.message)
        return canary

    def fail(self, canary: CanaryDeployment, reason: str) -> CanaryDeployment:
        """Abort a running canary without a controlled rollback."""
        self._require_status(canary, CanaryStatus.RUNNING, "fail")
        canary.traffic_split_percent = 0.0
        canary.status = CanaryStatus.FAILED
        canary.completed_at = self._clock.now()
        canary.message = reason
        logger.warning("Canary failed", id=canary.id, reason=reason)
        return canary

    def _ramp(self, canary: CanaryDeployment) -> float:
        split = canary.traffic_split_percent
        target = canary.ramp.target_percent
        step = canary.ramp.step_percent
        if split < target:
            split = min(target, split + step)
        elif split > target:
            split = max(target, split - step)
        return clamp(split, 0.0, 100.0)

    def _require_status(self, canary: CanaryDeployment, status: CanaryStatus, action: str) -> None:
        if canary.status != status:
            raise InvalidTransition(
                f"Cannot {action} canary {canary.id} while {canary.status.value}",
                entity_id=canary.id,
                current=canary.status.value,
                required=[status.value],
            )


class AutoRollbackPolicy:
    """Rolls a canary back when any health check fails."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def should_rollback(self, canary: CanaryDeployment, checks: list[HealthCheck]) -> bool:
        return (
            self.enabled
            and canary.status == CanaryStatus.RUNNING
            and any(c.status == HealthStatus.FAIL for c in checks)
        )

    def apply(
        self,
        controller: CanaryController,
        canary: CanaryDeployment,
        checks: list[HealthCheck],
    ) -> bool:
        """Roll back if warranted.

        Returns:
            True if the canary was rolled back
        """
        if not self.should_rollback(canary, checks):
            return False
        failed = ", ".join(c.name for c in checks if c.status == HealthStatus.FAIL)
        controller.rollback(canary, reason=f"Automatic rollback: failing checks {failed}")
        return True
