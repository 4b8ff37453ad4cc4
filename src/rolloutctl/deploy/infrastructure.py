"""Infrastructure resource health monitoring."""

import random
from typing import Callable

from rolloutctl.core.clock import Clock, SystemClock
from rolloutctl.core.exceptions import NotFound, ValidationError
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.models import (
    InfrastructureResource,
    InfrastructureSnapshot,
    ResourceStatus,
)

logger = StructuredLogger(__name__)

UtilizationSource = Callable[[InfrastructureResource], float]

# Operator-driven lifecycle states that utilization never overrides
_LIFECYCLE_STATES = (ResourceStatus.PROVISIONING, ResourceStatus.TERMINATING)


def derive_resource_status(
    utilization: float,
    current: ResourceStatus,
    warning_threshold: float = 85.0,
    critical_threshold: float = 95.0,
) -> ResourceStatus:
    """Status implied by utilization, keeping provisioning/terminating."""
    if current in _LIFECYCLE_STATES:
        return current
    if utilization > critical_threshold:
        return ResourceStatus.CRITICAL
    if utilization > warning_threshold:
        return ResourceStatus.WARNING
    return ResourceStatus.HEALTHY


class RandomWalkUtilization:
    """Default reading source: current utilization plus bounded noise."""

    def __init__(self, max_drift: float = 5.0, rng: random.Random | None = None):
        self.max_drift = max_drift
        self._rng = rng or random.Random()

    def __call__(self, resource: InfrastructureResource) -> float:
        return resource.utilization_percent + self._rng.uniform(-self.max_drift, self.max_drift)


class InfrastructureMonitor:
    """Tracks externally owned resources and derives their health."""

    def __init__(
        self,
        clock: Clock | None = None,
        utilization_source: UtilizationSource | None = None,
        warning_threshold: float = 85.0,
        critical_threshold: float = 95.0,
    ):
        if warning_threshold > critical_threshold:
            raise ValidationError("warning_threshold must not exceed critical_threshold")
        self._clock = clock or SystemClock()
        self._source = utilization_source or RandomWalkUtilization()
        self._warning = warning_threshold
        self._critical = critical_threshold
        self._resources: dict[str, InfrastructureResource] = {}

    @property
    def resources(self) -> list[InfrastructureResource]:
        return list(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def track(self, resource: InfrastructureResource) -> InfrastructureResource:
        """Start (or keep) watching a resource; an existing id is replaced."""
        if not 0 <= resource.utilization_percent <= 100:
            raise ValidationError(
                "utilization_percent must be within [0, 100]",
                {"id": resource.id, "utilization_percent": resource.utilization_percent},
            )
        if resource.cost_per_month < 0:
            raise ValidationError(
                "cost_per_month must not be negative",
                {"id": resource.id, "cost_per_month": resource.cost_per_month},
            )
        self._resources[resource.id] = resource
        return resource

    def untrack(self, resource_id: str) -> InfrastructureResource:
        """Stop watching a resource."""
        resource = self.get(resource_id)
        del self._resources[resource_id]
        return resource

    def get(self, resource_id: str) -> InfrastructureResource:
        """Look up a tracked resource."""
        try:
            return self._resources[resource_id]
        except KeyError:
            raise NotFound(f"Resource not found: {resource_id}", entity_id=resource_id, kind="resource")

    def poll(
        self,
        resource: InfrastructureResource | str,
        utilization: float | None = None,
    ) -> InfrastructureResource:
        """Refresh one resource's utilization and status.

        Args:
            resource: Resource or its id
            utilization: Explicit reading; otherwise asked from the source

        Returns:
            The updated resource
        """
        resource_id = resource if isinstance(resource, str) else resource.id
        tracked = self.get(resource_id)

        if utilization is None:
            reading = max(0.0, min(100.0, self._source(tracked)))
        elif 0 <= utilization <= 100:
            reading = float(utilization)
        else:
            raise ValidationError(
                "utilization must be within [0, 100]",
                {"id": resource_id, "utilization": utilization},
            )

        previous = tracked.status
        tracked.utilization_percent = reading
        tracked.status = derive_resource_status(reading, previous, self._warning, self._critical)
        tracked.last_updated = self._clock.now()

        if tracked.status != previous:
            logger.info(
                "Resource status changed",
                id=resource_id,
                previous=previous.value,
                status=tracked.status.value,
                utilization=round(reading, 1),
            )
        return tracked

    def poll_all(self) -> list[InfrastructureResource]:
        """Poll every tracked resource."""
        return [self.poll(resource_id) for resource_id in list(self._resources)]

    def total_monthly_cost(self) -> float:
        return sum(r.cost_per_month for r in self._resources.values())

    def resources_by_status(self, status: ResourceStatus | str) -> list[InfrastructureResource]:
        """Resources currently in the given status."""
        try:
            wanted = ResourceStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown resource status '{status}'")
        return [r for r in self._resources.values() if r.status == wanted]

    def snapshot(self) -> InfrastructureSnapshot:
        """Aggregate view of all tracked resources."""
        resources = self.resources
        counts = {s.value: 0 for s in ResourceStatus}
        for r in resources:
            counts[r.status.value] += 1
        average = sum(r.utilization_percent for r in resources) / len(resources) if resources else 0.0
        return InfrastructureSnapshot(
            taken_at=self._clock.now(),
            resources=resources,
            total_monthly_cost=self.total_monthly_cost(),
            status_counts=counts,
            average_utilization_percent=average,
        )
