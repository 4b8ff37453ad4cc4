"""Pipeline and stage lifecycle.

Stages run strictly in declared order and each one owns an equal share of the
pipeline's progress: stage ``i`` of ``n`` completes once progress reaches
``100 * (i + 1) / n``. Gated stages hold progress at the middle of their share
and wait for an explicit result.
"""

import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Iterable

from rolloutctl.core.clock import Clock, SystemClock
from rolloutctl.core.exceptions import InvalidTransition, NotFound, ValidationError
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.models import (
    Environment,
    Pipeline,
    PipelineStatus,
    Stage,
    StageDefinition,
    StageResult,
    StageStatus,
)
from rolloutctl.deploy.status import derive_pipeline_status

logger = StructuredLogger(__name__)

_STAGE_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.PENDING: {StageStatus.RUNNING, StageStatus.SKIPPED},
    StageStatus.RUNNING: {StageStatus.SUCCESS, StageStatus.FAILED},
    StageStatus.SUCCESS: set(),
    StageStatus.FAILED: set(),
    StageStatus.SKIPPED: set(),
}


def transition_stage(
    stage: Stage,
    to: StageStatus,
    now: datetime | None = None,
    message: str | None = None,
) -> Stage:
    """Move a stage to a new status, stamping its timing.

    Raises:
        InvalidTransition: If the move is not allowed from the current status
    """
    if to not in _STAGE_TRANSITIONS[stage.status]:
        raise InvalidTransition(
            f"Stage '{stage.id}' cannot go from {stage.status.value} to {to.value}",
            entity_id=stage.id,
            current=stage.status.value,
            required=[s.value for s, targets in _STAGE_TRANSITIONS.items() if to in targets],
        )

    if to == StageStatus.RUNNING:
        stage.start_time = now
    elif to in (StageStatus.SUCCESS, StageStatus.FAILED):
        # end_time never precedes start_time
        stage.end_time = max(now, stage.start_time) if now and stage.start_time else now

    stage.status = to
    if message:
        stage.logs.append(message)
    return stage


def stage_boundary(index: int, count: int) -> float:
    """Progress at which stage ``index`` of ``count`` is complete."""
    return 100.0 * (index + 1) / count


class ProgressPolicy(ABC):
    """Decides how far a running pipeline moves on each tick."""

    @abstractmethod
    def next_increment(self, pipeline: Pipeline) -> float:
        """Progress points to add for this tick."""
        pass


class RandomIncrement(ProgressPolicy):
    """Uniformly random increment within bounds."""

    def __init__(self, minimum: float = 1.0, maximum: float = 10.0, rng: random.Random | None = None):
        if minimum < 0 or maximum < minimum or maximum > 100:
            raise ValidationError(
                "Progress increment bounds must satisfy 0 <= min <= max <= 100",
                {"min": minimum, "max": maximum},
            )
        self.minimum = minimum
        self.maximum = maximum
        self._rng = rng or random.Random()

    def next_increment(self, pipeline: Pipeline) -> float:
        return self._rng.uniform(self.minimum, self.maximum)


class FixedIncrement(ProgressPolicy):
    """Same increment every tick."""

    def __init__(self, step: float):
        if step < 0 or step > 100:
            raise ValidationError("Progress increment must be within [0, 100]", {"step": step})
        self.step = step

    def next_increment(self, pipeline: Pipeline) -> float:
        return self.step


def parse_environment(value: Environment | str) -> Environment:
    """Coerce user input to an Environment."""
    try:
        return Environment(value)
    except ValueError:
        choices = ", ".join(e.value for e in Environment)
        raise ValidationError(f"Unknown environment '{value}'. Choose from: {choices}")


class PipelineEngine:
    """Creates pipelines and drives them through their stages."""

    def __init__(self, clock: Clock | None = None, progress_policy: ProgressPolicy | None = None):
        self._clock = clock or SystemClock()
        self._policy = progress_policy or RandomIncrement()

    @property
    def progress_policy(self) -> ProgressPolicy:
        return self._policy

    def create_pipeline(
        self,
        name: str,
        environment: Environment | str,
        branch: str,
        commit_hash: str,
        version: str,
        deployed_by: str,
        stage_definitions: Iterable[StageDefinition],
        deferred: bool = False,
    ) -> Pipeline:
        """Create a pipeline with every stage pending.

        Args:
            deferred: Leave the pipeline idle until ``start`` is called

        Returns:
            New Pipeline, running unless deferred
        """
        env = parse_environment(environment)
        definitions = list(stage_definitions)

        for field_name, value in (
            ("name", name),
            ("branch", branch),
            ("commit_hash", commit_hash),
            ("version", version),
        ):
            if not value or not str(value).strip():
                raise ValidationError(f"Pipeline {field_name} must not be empty")
        if not definitions:
            raise ValidationError("A pipeline needs at least one stage")
        ids = [d.id for d in definitions]
        if len(ids) != len(set(ids)):
            raise ValidationError("Stage ids must be unique", {"stages": ids})

        now = self._clock.now()
        pipeline = Pipeline(
            name=name,
            environment=env,
            branch=branch,
            commit_hash=commit_hash,
            version=version,
            deployed_by=deployed_by,
            stages=[Stage(id=d.id, name=d.name, gated=d.gated) for d in definitions],
            created_at=now,
        )

        if not deferred:
            self._begin(pipeline, now)

        logger.info(
            "Pipeline created",
            id=pipeline.id,
            environment=env.value,
            version=version,
            status=pipeline.status.value,
        )
        return pipeline

    def start(self, pipeline: Pipeline) -> Pipeline:
        """Start a deferred pipeline."""
        self._require(pipeline, PipelineStatus.IDLE, "start")
        self._begin(pipeline, self._clock.now())
        pipeline.revision += 1
        logger.info("Pipeline started", id=pipeline.id)
        return pipeline

    def pause(self, pipeline: Pipeline) -> Pipeline:
        """Hold a running pipeline; ticks leave it untouched until resumed."""
        self._require(pipeline, PipelineStatus.RUNNING, "pause")
        pipeline.status = PipelineStatus.PAUSED
        self._log_current(pipeline, "Pipeline paused by operator")
        pipeline.revision += 1
        logger.info("Pipeline paused", id=pipeline.id, progress=round(pipeline.progress, 1))
        return pipeline

    def resume(self, pipeline: Pipeline) -> Pipeline:
        """Resume a paused pipeline."""
        self._require(pipeline, PipelineStatus.PAUSED, "resume")
        pipeline.status = PipelineStatus.RUNNING
        self._log_current(pipeline, "Pipeline resumed")
        pipeline.revision += 1
        logger.info("Pipeline resumed", id=pipeline.id)
        return pipeline

    def advance(self, pipeline: Pipeline, elapsed_ms: float) -> Pipeline:
        """Move a running pipeline forward by one tick.

        Progress never decreases. Idle, paused and finished pipelines are
        returned unchanged.

        Args:
            pipeline: Pipeline to advance
            elapsed_ms: Simulated time covered by this tick

        Returns:
            The same Pipeline
        """
        if elapsed_ms < 0:
            raise ValidationError("elapsed_ms must not be negative", {"elapsed_ms": elapsed_ms})
        if pipeline.status != PipelineStatus.RUNNING:
            return pipeline

        index = self._running_index(pipeline)
        if index is None:
            # Nothing open; settle status from the stages themselves
            self._settle(pipeline, self._sim_now(pipeline))
            return pipeline

        # Nothing is mutated until the policy has answered
        increment = max(0.0, self._policy.next_increment(pipeline))

        pipeline.elapsed_ms += elapsed_ms
        now = self._sim_now(pipeline)
        target = min(100.0, pipeline.progress + increment, self._progress_cap(pipeline, index))
        pipeline.progress = max(pipeline.progress, target)

        self._complete_crossed_stages(pipeline, now)
        pipeline.revision += 1

        logger.debug(
            "Pipeline advanced",
            id=pipeline.id,
            progress=round(pipeline.progress, 1),
            status=pipeline.status.value,
        )
        return pipeline

    def mark_stage_result(
        self,
        pipeline: Pipeline,
        stage_id: str,
        result: StageResult | str,
        expected_revision: int | None = None,
        message: str | None = None,
    ) -> Pipeline:
        """Apply an externally reported stage outcome.

        Raises:
            ValidationError: Unknown result value
            NotFound: Unknown stage id
            InvalidTransition: Stage is not running, or the revision is stale
        """
        try:
            outcome = StageResult(result)
        except ValueError:
            raise ValidationError(f"Unknown stage result '{result}'. Use 'success' or 'failed'")

        stage = pipeline.stage(stage_id)
        if stage is None:
            raise NotFound(
                f"Stage '{stage_id}' not found in pipeline {pipeline.id}",
                entity_id=stage_id,
                kind="stage",
            )
        if expected_revision is not None and expected_revision != pipeline.revision:
            raise InvalidTransition(
                f"Pipeline {pipeline.id} changed since revision {expected_revision}",
                entity_id=pipeline.id,
                current=str(pipeline.revision),
                required=[str(expected_revision)],
            )
        if stage.status != StageStatus.RUNNING:
            raise InvalidTransition(
                f"Stage '{stage_id}' is {stage.status.value}, only a running stage accepts a result",
                entity_id=stage_id,
                current=stage.status.value,
                required=[StageStatus.RUNNING.value],
            )

        now = self._sim_now(pipeline)
        index = pipeline.stages.index(stage)

        if outcome == StageResult.SUCCESS:
            transition_stage(stage, StageStatus.SUCCESS, now, message or "Stage reported success")
            pipeline.progress = max(pipeline.progress, stage_boundary(index, len(pipeline.stages)))
            self._open_next(pipeline, index, now)
            self._settle(pipeline, now)
        else:
            self._fail(pipeline, stage, now, message or "Stage reported failure")

        pipeline.revision += 1
        logger.info(
            "Stage result applied",
            id=pipeline.id,
            stage=stage_id,
            result=outcome.value,
            status=pipeline.status.value,
        )
        return pipeline

    # Internals

    def _begin(self, pipeline: Pipeline, now: datetime) -> None:
        pipeline.status = PipelineStatus.RUNNING
        pipeline.start_time = now
        pipeline.elapsed_ms = 0.0
        transition_stage(pipeline.stages[0], StageStatus.RUNNING, now, "Stage started")

    def _require(self, pipeline: Pipeline, status: PipelineStatus, action: str) -> None:
        if pipeline.status != status:
            raise InvalidTransition(
                f"Cannot {action} pipeline {pipeline.id} while {pipeline.status.value}",
                entity_id=pipeline.id,
                current=pipeline.status.value,
                required=[status.value],
            )

    def _sim_now(self, pipeline: Pipeline) -> datetime:
        if pipeline.start_time is None:
            return self._clock.now()
        return pipeline.start_time + timedelta(milliseconds=pipeline.elapsed_ms)

    def _running_index(self, pipeline: Pipeline) -> int | None:
        for i, stage in enumerate(pipeline.stages):
            if stage.status == StageStatus.RUNNING:
                return i
        return None

    def _progress_cap(self, pipeline: Pipeline, index: int) -> float:
        """Highest progress reachable before the next gated stage reports."""
        count = len(pipeline.stages)
        for i in range(index, count):
            if pipeline.stages[i].gated:
                # Midpoint of the gated share, strictly below its boundary
                start = stage_boundary(i - 1, count) if i else 0.0
                return (start + stage_boundary(i, count)) / 2
        return 100.0

    def _complete_crossed_stages(self, pipeline: Pipeline, now: datetime) -> None:
        count = len(pipeline.stages)
        while True:
            index = self._running_index(pipeline)
            if index is None:
                break
            stage = pipeline.stages[index]
            if stage.gated or pipeline.progress < stage_boundary(index, count):
                break
            transition_stage(stage, StageStatus.SUCCESS, now, "Stage completed")
            self._open_next(pipeline, index, now)
        self._settle(pipeline, now)

    def _open_next(self, pipeline: Pipeline, index: int, now: datetime) -> None:
        if index + 1 < len(pipeline.stages):
            transition_stage(pipeline.stages[index + 1], StageStatus.RUNNING, now, "Stage started")

    def _fail(self, pipeline: Pipeline, stage: Stage, now: datetime, reason: str) -> None:
        transition_stage(stage, StageStatus.FAILED, now, reason)
        for later in pipeline.stages:
            if later.status == StageStatus.PENDING:
                transition_stage(later, StageStatus.SKIPPED, message=f"Skipped after '{stage.id}' failed")
        pipeline.message = f"Stage '{stage.id}' failed: {reason}"
        self._settle(pipeline, now)

    def _settle(self, pipeline: Pipeline, now: datetime) -> None:
        status = derive_pipeline_status(pipeline.stages, pipeline.status)
        if status == pipeline.status:
            return
        pipeline.status = status
        if status == PipelineStatus.SUCCESS:
            pipeline.progress = 100.0
        if pipeline.is_terminal and pipeline.end_time is None:
            pipeline.end_time = now
            logger.info(
                "Pipeline finished",
                id=pipeline.id,
                status=status.value,
                progress=round(pipeline.progress, 1),
            )

    def _log_current(self, pipeline: Pipeline, message: str) -> None:
        stage = pipeline.current_stage
        if stage is not None:
            stage.logs.append(message)
