"""Deployment orchestrator: the single owner of pipelines and canaries."""

import copy
import random
import threading
from typing import Callable, Iterable

from rolloutctl.config import RolloutConfig, get_default_config
from rolloutctl.core.clock import Clock, SystemClock
from rolloutctl.core.exceptions import NotFound
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.canary import AutoRollbackPolicy, CanaryController
from rolloutctl.deploy.infrastructure import InfrastructureMonitor, RandomWalkUtilization
from rolloutctl.deploy.metrics import DeploymentMetricsAggregator
from rolloutctl.deploy.models import (
    CanaryDeployment,
    CanaryStatus,
    DeploymentMetrics,
    DeploymentRecord,
    Environment,
    HealthCheck,
    InfrastructureResource,
    InfrastructureSnapshot,
    Pipeline,
    PipelineStatus,
    RampPolicy,
    StageDefinition,
    StageResult,
    default_stage_definitions,
)
from rolloutctl.deploy.pipeline import (
    PipelineEngine,
    ProgressPolicy,
    RandomIncrement,
    parse_environment,
)
from rolloutctl.deploy.scheduler import PipelineScheduler

logger = StructuredLogger(__name__)

PipelineListener = Callable[[Pipeline], None]
CanaryListener = Callable[[CanaryDeployment], None]
HealthListener = Callable[[CanaryDeployment, HealthCheck], None]


class DeploymentOrchestrator:
    """Commands, queries and events over the orchestration core.

    Every mutation runs under one re-entrant lock, so scheduler ticks and
    external commands such as ``mark_stage_result`` never interleave. Queries
    return deep copies.
    """

    def __init__(
        self,
        config: RolloutConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        progress_policy: ProgressPolicy | None = None,
        monitor: InfrastructureMonitor | None = None,
        history: Iterable[DeploymentRecord] = (),
    ):
        self._config = config or get_default_config()
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random(self._config.scheduler.seed)
        self._lock = threading.RLock()

        bounds = self._config.scheduler.progress_increment_bounds
        self._engine = PipelineEngine(
            clock=self._clock,
            progress_policy=progress_policy or RandomIncrement(bounds.min, bounds.max, self._rng),
        )
        self._canaries_ctl = CanaryController(
            thresholds=self._config.canary.thresholds,
            rng=self._rng,
            clock=self._clock,
        )
        self._auto_rollback = AutoRollbackPolicy(self._config.canary.get_auto_rollback())

        infra = self._config.infrastructure
        self._monitor = monitor or InfrastructureMonitor(
            clock=self._clock,
            utilization_source=RandomWalkUtilization(infra.max_drift_percent, self._rng),
            warning_threshold=infra.warning_threshold_percent,
            critical_threshold=infra.critical_threshold_percent,
        )
        self._aggregator = DeploymentMetricsAggregator(clock=self._clock, records=history)

        self._pipelines: dict[str, Pipeline] = {}
        self._canaries: dict[str, CanaryDeployment] = {}

        self._pipeline_listeners: list[PipelineListener] = []
        self._canary_listeners: list[CanaryListener] = []
        self._health_listeners: list[HealthListener] = []

        self._scheduler = PipelineScheduler(
            engine=self._engine,
            pipelines=lambda: list(self._pipelines.values()),
            interval_ms=self._config.scheduler.get_tick_interval_ms(),
            lock=self._lock,
            on_completed=self._pipeline_completed,
        )
        self._scheduler.mark_completed(r.entity_id for r in self._aggregator.history())
        self._scheduler.add_after_tick(self._tick_canaries)

    # Wiring

    @property
    def config(self) -> RolloutConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def scheduler(self) -> PipelineScheduler:
        return self._scheduler

    @property
    def monitor(self) -> InfrastructureMonitor:
        return self._monitor

    @property
    def aggregator(self) -> DeploymentMetricsAggregator:
        return self._aggregator

    @property
    def auto_rollback(self) -> AutoRollbackPolicy:
        return self._auto_rollback

    def on_pipeline_completed(self, callback: PipelineListener) -> None:
        """Subscribe to pipelines reaching success or failure."""
        self._pipeline_listeners.append(callback)

    def on_canary_completed(self, callback: CanaryListener) -> None:
        """Subscribe to canaries being promoted, failed or rolled back."""
        self._canary_listeners.append(callback)

    def on_health_check_failed(self, callback: HealthListener) -> None:
        """Subscribe to failing canary health checks."""
        self._health_listeners.append(callback)

    def restore(
        self,
        pipelines: Iterable[Pipeline] = (),
        canaries: Iterable[CanaryDeployment] = (),
        resources: Iterable[InfrastructureResource] = (),
        history: Iterable[DeploymentRecord] = (),
    ) -> None:
        """Load previously persisted entities without firing events."""
        with self._lock:
            self._aggregator.load(history)
            self._scheduler.mark_completed(r.entity_id for r in self._aggregator.history())
            for pipeline in pipelines:
                self._pipelines[pipeline.id] = pipeline
                if pipeline.is_terminal:
                    self._scheduler.mark_completed([pipeline.id])
            for canary in canaries:
                self._canaries[canary.id] = canary
            for resource in resources:
                self._monitor.track(resource)

    # Pipeline commands

    def request_deployment(
        self,
        environment: Environment | str,
        branch: str,
        commit_hash: str,
        version: str,
        deployed_by: str,
        name: str | None = None,
        stages: Iterable[StageDefinition] | None = None,
        deferred: bool = False,
    ) -> str:
        """Create a pipeline for a deploy request.

        Returns:
            The new pipeline id
        """
        env = parse_environment(environment)
        definitions = list(stages) if stages is not None else default_stage_definitions(env)
        with self._lock:
            pipeline = self._engine.create_pipeline(
                name=name or f"{env.value.capitalize()} Deployment",
                environment=env,
                branch=branch,
                commit_hash=commit_hash,
                version=version,
                deployed_by=deployed_by,
                stage_definitions=definitions,
                deferred=deferred,
            )
            self._pipelines[pipeline.id] = pipeline
        return pipeline.id

    def start_pipeline(self, pipeline_id: str) -> Pipeline:
        with self._lock:
            return self._snapshot(self._engine.start(self._pipeline(pipeline_id)))

    def pause_pipeline(self, pipeline_id: str) -> Pipeline:
        with self._lock:
            return self._snapshot(self._engine.pause(self._pipeline(pipeline_id)))

    def resume_pipeline(self, pipeline_id: str) -> Pipeline:
        with self._lock:
            return self._snapshot(self._engine.resume(self._pipeline(pipeline_id)))

    def mark_stage_result(
        self,
        pipeline_id: str,
        stage_id: str,
        result: StageResult | str,
        expected_revision: int | None = None,
        message: str | None = None,
    ) -> Pipeline:
        """Apply an external stage result (e.g. a CI webhook)."""
        with self._lock:
            pipeline = self._pipeline(pipeline_id)
            self._engine.mark_stage_result(pipeline, stage_id, result, expected_revision, message)
            if pipeline.is_terminal:
                self._scheduler.announce(pipeline)
            return self._snapshot(pipeline)

    # Canary commands

    def request_canary(
        self,
        name: str,
        current_version: str,
        target_version: str,
        ramp: RampPolicy | None = None,
        deferred: bool = False,
    ) -> str:
        """Create a canary rollout, running unless deferred.

        Returns:
            The new canary id
        """
        canary_config = self._config.canary
        ramp = ramp or RampPolicy(
            initial_percent=canary_config.initial_traffic_percent,
            step_percent=canary_config.ramp_step_percent,
            target_percent=canary_config.target_traffic_percent,
        )
        with self._lock:
            canary = self._canaries_ctl.create(name, current_version, target_version, ramp)
            if not deferred:
                self._canaries_ctl.start(canary)
            self._canaries[canary.id] = canary
        return canary.id

    def start_canary(self, canary_id: str) -> CanaryDeployment:
        with self._lock:
            return self._snapshot(self._canaries_ctl.start(self._canary(canary_id)))

    def promote_canary(self, canary_id: str) -> CanaryDeployment:
        with self._lock:
            canary = self._canaries_ctl.promote(self._canary(canary_id))
            self._canary_completed(canary)
            return self._snapshot(canary)

    def rollback_canary(self, canary_id: str, reason: str | None = None) -> CanaryDeployment:
        with self._lock:
            canary = self._canaries_ctl.rollback(self._canary(canary_id), reason)
            self._canary_completed(canary)
            return self._snapshot(canary)

    def evaluate_canary(self, canary_id: str) -> list[HealthCheck]:
        """Current health checks for a canary, without acting on them."""
        with self._lock:
            return self._canaries_ctl.evaluate_health(self._canary(canary_id))

    # Time

    def tick(self, elapsed_ms: float | None = None) -> list[Pipeline]:
        """Advance pipelines and canaries by one scheduler tick.

        Returns:
            Copies of the pipelines that finished during this tick
        """
        return [self._snapshot(p) for p in self._scheduler.tick(elapsed_ms)]

    # Infrastructure

    def track_resource(self, resource: InfrastructureResource) -> InfrastructureResource:
        with self._lock:
            return self._snapshot(self._monitor.track(resource))

    def poll_infrastructure(self) -> InfrastructureSnapshot:
        """Poll every resource and return the resulting snapshot."""
        with self._lock:
            self._monitor.poll_all()
            return self._snapshot(self._monitor.snapshot())

    # Queries

    def get_pipeline(self, pipeline_id: str) -> Pipeline:
        with self._lock:
            return self._snapshot(self._pipeline(pipeline_id))

    def list_pipelines(
        self,
        status: PipelineStatus | str | None = None,
        environment: Environment | str | None = None,
    ) -> list[Pipeline]:
        """Pipelines, newest first, optionally filtered."""
        wanted_status = PipelineStatus(status) if status else None
        wanted_env = parse_environment(environment) if environment else None
        with self._lock:
            pipelines = [
                p for p in self._pipelines.values()
                if (wanted_status is None or p.status == wanted_status)
                and (wanted_env is None or p.environment == wanted_env)
            ]
            pipelines.sort(key=lambda p: p.created_at, reverse=True)
            return self._snapshot(pipelines)

    def get_canary(self, canary_id: str) -> CanaryDeployment:
        with self._lock:
            return self._snapshot(self._canary(canary_id))

    def list_canaries(self, status: CanaryStatus | str | None = None) -> list[CanaryDeployment]:
        wanted = CanaryStatus(status) if status else None
        with self._lock:
            canaries = [c for c in self._canaries.values() if wanted is None or c.status == wanted]
            canaries.sort(key=lambda c: c.created_at, reverse=True)
            return self._snapshot(canaries)

    def get_infrastructure_snapshot(self) -> InfrastructureSnapshot:
        with self._lock:
            return self._snapshot(self._monitor.snapshot())

    def get_metrics(self, window_days: float | None = None) -> DeploymentMetrics:
        """Fleet KPIs over the configured (or given) window."""
        days = window_days if window_days is not None else self._config.metrics.window_days
        return self._aggregator.compute_metrics(days)

    # Internals

    def _snapshot(self, value):
        return copy.deepcopy(value)

    def _pipeline(self, pipeline_id: str) -> Pipeline:
        try:
            return self._pipelines[pipeline_id]
        except KeyError:
            raise NotFound(f"Pipeline not found: {pipeline_id}", entity_id=pipeline_id, kind="pipeline")

    def _canary(self, canary_id: str) -> CanaryDeployment:
        try:
            return self._canaries[canary_id]
        except KeyError:
            raise NotFound(f"Canary not found: {canary_id}", entity_id=canary_id, kind="canary")

    def _tick_canaries(self, elapsed_ms: float) -> None:
        for canary in list(self._canaries.values()):
            if canary.status != CanaryStatus.RUNNING:
                continue
            self._canaries_ctl.tick(canary, elapsed_ms)
            checks = self._canaries_ctl.evaluate_health(canary)
            canary.health_checks = checks

            for check in canary.failing_checks:
                self._emit_health_failed(canary, check)

            if self._auto_rollback.apply(self._canaries_ctl, canary, checks):
                self._canary_completed(canary)

    def _pipeline_completed(self, pipeline: Pipeline) -> None:
        self._aggregator.record_completion(pipeline)
        snapshot = self._snapshot(pipeline)
        for listener in list(self._pipeline_listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Pipeline listener failed", id=pipeline.id, error=str(e))

    def _canary_completed(self, canary: CanaryDeployment) -> None:
        self._aggregator.record_canary(canary)
        snapshot = self._snapshot(canary)
        for listener in list(self._canary_listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning("Canary listener failed", id=canary.id, error=str(e))

    def _emit_health_failed(self, canary: CanaryDeployment, check: HealthCheck) -> None:
        logger.warning("Canary health check failed", id=canary.id, check=check.name, detail=check.message)
        snapshot = self._snapshot(canary)
        for listener in list(self._health_listeners):
            try:
                listener(snapshot, check)
            except Exception as e:
                logger.warning("Health listener failed", id=canary.id, error=str(e))
