"""Tests for infrastructure monitoring."""

import pytest

from rolloutctl.core.exceptions import NotFound, ValidationError
from rolloutctl.deploy.infrastructure import InfrastructureMonitor, derive_resource_status
from rolloutctl.deploy.models import InfrastructureResource, ResourceStatus, ResourceType


def resource(resource_id: str = "web", utilization: float = 50.0, **kwargs) -> InfrastructureResource:
    return InfrastructureResource(
        id=resource_id,
        type=kwargs.pop("type", ResourceType.COMPUTE),
        name=kwargs.pop("name", resource_id),
        utilization_percent=utilization,
        **kwargs,
    )


class TestDeriveStatus:
    """Tests for utilization thresholds."""

    @pytest.mark.parametrize(
        "utilization,expected",
        [
            (10, ResourceStatus.HEALTHY),
            (85, ResourceStatus.HEALTHY),
            (85.1, ResourceStatus.WARNING),
            (95, ResourceStatus.WARNING),
            (96, ResourceStatus.CRITICAL),
        ],
    )
    def test_thresholds(self, utilization, expected):
        assert derive_resource_status(utilization, ResourceStatus.HEALTHY) == expected

    @pytest.mark.parametrize("state", [ResourceStatus.PROVISIONING, ResourceStatus.TERMINATING])
    def test_lifecycle_states_kept(self, state):
        assert derive_resource_status(99, state) == state


class TestMonitor:
    """Tests for InfrastructureMonitor."""

    def test_thousand_resources_at_96_are_critical(self, clock):
        monitor = InfrastructureMonitor(clock=clock)
        for i in range(1000):
            monitor.track(resource(f"node-{i}", 10))

        for r in monitor.resources:
            monitor.poll(r.id, utilization=96)

        assert len(monitor) == 1000
        assert len(monitor.resources_by_status("critical")) == 1000

    def test_source_reading_clamped(self, clock):
        monitor = InfrastructureMonitor(clock=clock, utilization_source=lambda r: 140.0)
        monitor.track(resource("db", 99))
        polled = monitor.poll("db")
        assert polled.utilization_percent == 100
        assert polled.status == ResourceStatus.CRITICAL
        assert polled.last_updated == clock.now()

    def test_random_walk_stays_in_range(self, monitor):
        monitor.track(resource("cache", 99))
        monitor.track(resource("disk", 1))
        for _ in range(200):
            for r in monitor.poll_all():
                assert 0 <= r.utilization_percent <= 100

    def test_explicit_reading_out_of_range(self, monitor):
        monitor.track(resource("web"))
        with pytest.raises(ValidationError):
            monitor.poll("web", utilization=101)

    def test_track_validates(self, monitor):
        with pytest.raises(ValidationError):
            monitor.track(resource("web", 120))
        with pytest.raises(ValidationError):
            monitor.track(resource("web", cost_per_month=-1))

    def test_track_replaces_existing(self, monitor):
        monitor.track(resource("web", 10))
        monitor.track(resource("web", 20))
        assert len(monitor) == 1
        assert monitor.get("web").utilization_percent == 20

    def test_unknown_resource(self, monitor):
        with pytest.raises(NotFound):
            monitor.poll("missing")
        with pytest.raises(NotFound):
            monitor.untrack("missing")

    def test_untrack(self, monitor):
        monitor.track(resource("web"))
        monitor.untrack("web")
        assert len(monitor) == 0

    def test_unknown_status_filter(self, monitor):
        with pytest.raises(ValidationError):
            monitor.resources_by_status("sleepy")

    def test_inverted_thresholds_rejected(self):
        with pytest.raises(ValidationError):
            InfrastructureMonitor(warning_threshold=90, critical_threshold=80)

    def test_snapshot(self, monitor):
        monitor.track(resource("web", 40, cost_per_month=245.50))
        monitor.track(resource("cache", 90, cost_per_month=95.25, status=ResourceStatus.WARNING))

        snapshot = monitor.snapshot()

        assert snapshot.total_monthly_cost == pytest.approx(340.75)
        assert snapshot.average_utilization_percent == pytest.approx(65)
        assert snapshot.status_counts["healthy"] == 1
        assert snapshot.status_counts["warning"] == 1
        assert snapshot.status_counts["critical"] == 0

    def test_empty_snapshot(self, monitor):
        snapshot = monitor.snapshot()
        assert snapshot.resources == []
        assert snapshot.total_monthly_cost == 0
        assert snapshot.average_utilization_percent == 0
