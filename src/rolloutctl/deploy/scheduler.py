"""Periodic pipeline scheduler."""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Iterable

from rolloutctl.core.exceptions import ValidationError
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.models import Pipeline, PipelineStatus
from rolloutctl.deploy.pipeline import PipelineEngine

logger = StructuredLogger(__name__)

CompletionCallback = Callable[[Pipeline], None]
TickHook = Callable[[float], None]


class PipelineScheduler:
    """Advances every running pipeline on a fixed interval.

    ``tick()`` is the whole unit of work and can be driven directly; ``run()``
    and ``start()`` wrap it in an asyncio timer loop.
    """

    def __init__(
        self,
        engine: PipelineEngine,
        pipelines: Callable[[], Iterable[Pipeline]],
        interval_ms: int = 3000,
        lock: threading.RLock | None = None,
        on_completed: CompletionCallback | None = None,
    ):
        """Initialize scheduler.

        Args:
            engine: Engine that advances individual pipelines
            pipelines: Returns the pipelines currently owned by the caller
            interval_ms: Tick interval
            lock: Lock shared with every other writer of these pipelines
            on_completed: Called once for each pipeline that finishes
        """
        if interval_ms <= 0:
            raise ValidationError("interval_ms must be positive", {"interval_ms": interval_ms})
        self._engine = engine
        self._pipelines = pipelines
        self._interval_ms = interval_ms
        self._lock = lock or threading.RLock()
        self._on_completed = on_completed
        self._after_tick: list[TickHook] = []
        self._completed_ids: set[str] = set()
        self._stopped = False
        self._task: asyncio.Task | None = None
        self._ticks = 0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def tick_count(self) -> int:
        return self._ticks

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_after_tick(self, hook: TickHook) -> None:
        """Run ``hook(elapsed_ms)`` inside the lock after each tick."""
        self._after_tick.append(hook)

    def mark_completed(self, pipeline_ids: Iterable[str]) -> None:
        """Seed ids whose completion was already announced (e.g. after reload)."""
        self._completed_ids.update(pipeline_ids)

    def announce(self, pipeline: Pipeline) -> bool:
        """Fire completion for a pipeline finished outside a tick, at most once."""
        with self._lock:
            if not pipeline.is_terminal or pipeline.id in self._completed_ids:
                return False
            self._completed_ids.add(pipeline.id)
        self._notify(pipeline)
        return True

    def tick(self, elapsed_ms: float | None = None) -> list[Pipeline]:
        """Advance every running pipeline once.

        Args:
            elapsed_ms: Simulated time covered; defaults to the interval

        Returns:
            Pipelines that became terminal during this tick
        """
        elapsed = self._interval_ms if elapsed_ms is None else elapsed_ms
        if elapsed < 0:
            raise ValidationError("elapsed_ms must not be negative", {"elapsed_ms": elapsed})

        finished: list[Pipeline] = []
        with self._lock:
            if self._stopped:
                return finished

            for pipeline in list(self._pipelines()):
                if pipeline.status == PipelineStatus.RUNNING:
                    try:
                        self._engine.advance(pipeline, elapsed)
                    except Exception as e:
                        # One broken pipeline must not stall the others
                        logger.error("Failed to advance pipeline", id=pipeline.id, error=str(e))
                        continue

                if pipeline.is_terminal and pipeline.id not in self._completed_ids:
                    self._completed_ids.add(pipeline.id)
                    finished.append(pipeline)

            for hook in self._after_tick:
                hook(elapsed)

            self._ticks += 1

        for pipeline in finished:
            self._notify(pipeline)

        logger.debug("Tick complete", tick=self._ticks, finished=len(finished))
        return finished

    async def run(self, max_ticks: int | None = None) -> int:
        """Tick on the configured interval until stopped.

        Args:
            max_ticks: Stop on its own after this many ticks

        Returns:
            Number of ticks performed by this call
        """
        performed = 0
        while not self._stopped and (max_ticks is None or performed < max_ticks):
            await asyncio.sleep(self._interval_ms / 1000)
            if self._stopped:
                break
            self.tick()
            performed += 1
        return performed

    def start(self, max_ticks: int | None = None) -> asyncio.Task:
        """Schedule ``run`` on the current event loop."""
        if self.is_running:
            return self._task
        self._stopped = False
        self._task = asyncio.create_task(self.run(max_ticks))
        logger.info("Scheduler started", interval_ms=self._interval_ms)
        return self._task

    async def stop(self) -> None:
        """Cancel pending ticks; no pipeline is mutated after this returns."""
        with self._lock:
            self._stopped = True

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Scheduler stopped", ticks=self._ticks)

    def _notify(self, pipeline: Pipeline) -> None:
        if self._on_completed:
            try:
                self._on_completed(pipeline)
            except Exception as e:
                logger.warning("Completion callback failed", id=pipeline.id, error=str(e))
