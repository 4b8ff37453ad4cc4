"""Tests for the periodic pipeline scheduler."""

import asyncio
import threading

import pytest

from rolloutctl.core.exceptions import ValidationError
from rolloutctl.deploy.models import PipelineStatus
from rolloutctl.deploy.pipeline import PipelineEngine, ProgressPolicy
from rolloutctl.deploy.scheduler import PipelineScheduler


@pytest.fixture
def pipelines(make_pipeline):
    return [make_pipeline(), make_pipeline(version="v2.2.0")]


@pytest.fixture
def completed():
    return []


@pytest.fixture
def scheduler(engine, pipelines, completed):
    return PipelineScheduler(
        engine=engine,
        pipelines=lambda: pipelines,
        interval_ms=10,
        on_completed=completed.append,
    )


class TestTick:
    """Tests for a single scheduler tick."""

    def test_advances_running_pipelines(self, scheduler, pipelines):
        scheduler.tick()
        assert [p.progress for p in pipelines] == [20, 20]
        assert all(p.elapsed_ms == 10 for p in pipelines)
        assert scheduler.tick_count == 1

    def test_elapsed_override(self, scheduler, pipelines):
        scheduler.tick(3000)
        assert pipelines[0].elapsed_ms == 3000

    def test_negative_elapsed_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.tick(-5)

    def test_non_positive_interval_rejected(self, engine):
        with pytest.raises(ValidationError):
            PipelineScheduler(engine=engine, pipelines=list, interval_ms=0)

    def test_completion_fires_exactly_once(self, scheduler, pipelines, completed):
        finished = []
        for _ in range(10):
            finished.extend(scheduler.tick())

        assert [p.id for p in finished] == [p.id for p in pipelines]
        assert [p.id for p in completed] == [p.id for p in pipelines]
        assert all(p.status == PipelineStatus.SUCCESS for p in pipelines)

    def test_paused_pipeline_untouched(self, scheduler, engine, pipelines):
        engine.pause(pipelines[0])
        scheduler.tick()
        assert pipelines[0].progress == 0
        assert pipelines[1].progress == 20

    def test_failing_pipeline_isolated(self, clock, three_stages):
        class Flaky(ProgressPolicy):
            def next_increment(self, pipeline):
                if pipeline.version == "broken":
                    raise RuntimeError("bad increment")
                return 20

        engine = PipelineEngine(clock=clock, progress_policy=Flaky())
        owned = [
            engine.create_pipeline(
                name=f"p{version}", environment="staging", branch="main", commit_hash="abc",
                version=version, deployed_by="bob", stage_definitions=three_stages,
            )
            for version in ("broken", "v1")
        ]
        scheduler = PipelineScheduler(engine=engine, pipelines=lambda: owned)

        revision = owned[0].revision
        scheduler.tick(3000)

        assert owned[0].progress == 0
        assert owned[0].elapsed_ms == 0
        assert owned[0].revision == revision
        assert owned[0].status == PipelineStatus.RUNNING
        assert owned[1].progress == 20

    def test_accepts_shared_reentrant_lock(self, engine, pipelines):
        lock = threading.RLock()
        scheduler = PipelineScheduler(engine=engine, pipelines=lambda: pipelines, lock=lock)
        with lock:
            scheduler.tick()
        assert [p.progress for p in pipelines] == [20, 20]

    def test_callback_error_does_not_break_tick(self, engine, pipelines):
        def explode(pipeline):
            raise RuntimeError("listener down")

        scheduler = PipelineScheduler(engine=engine, pipelines=lambda: pipelines, on_completed=explode)
        for _ in range(5):
            scheduler.tick()
        assert all(p.status == PipelineStatus.SUCCESS for p in pipelines)

    def test_after_tick_hooks_run(self, scheduler):
        seen = []
        scheduler.add_after_tick(seen.append)
        scheduler.tick(250)
        assert seen == [250]

    def test_announce_is_at_most_once(self, scheduler, engine, pipelines, completed):
        pipeline = pipelines[0]
        assert scheduler.announce(pipeline) is False

        engine.mark_stage_result(pipeline, "build", "failed")
        assert scheduler.announce(pipeline) is True
        assert scheduler.announce(pipeline) is False
        scheduler.tick()
        assert [p.id for p in completed] == [pipeline.id]

    def test_mark_completed_suppresses_reannounce(self, scheduler, engine, pipelines, completed):
        for _ in range(5):
            scheduler.tick()
        completed.clear()

        restarted = PipelineScheduler(
            engine=engine,
            pipelines=lambda: pipelines,
            on_completed=completed.append,
        )
        restarted.mark_completed(p.id for p in pipelines)
        restarted.tick()
        assert completed == []


class TestRunLoop:
    """Tests for the asyncio timer loop."""

    def test_run_stops_after_max_ticks(self, scheduler, pipelines):
        performed = asyncio.run(scheduler.run(max_ticks=3))
        assert performed == 3
        assert pipelines[0].progress == 60

    def test_stop_prevents_further_mutation(self, scheduler, pipelines):
        async def scenario():
            scheduler.start()
            await asyncio.sleep(0.05)
            await scheduler.stop()
            frozen = [(p.progress, p.revision) for p in pipelines]
            await asyncio.sleep(0.05)
            return frozen

        frozen = asyncio.run(scenario())

        assert scheduler.is_stopped
        assert not scheduler.is_running
        assert [(p.progress, p.revision) for p in pipelines] == frozen
        assert scheduler.tick() == []
        assert [(p.progress, p.revision) for p in pipelines] == frozen

    def test_start_returns_same_task_while_running(self, scheduler):
        async def scenario():
            first = scheduler.start()
            second = scheduler.start()
            await scheduler.stop()
            return first is second

        assert asyncio.run(scenario())
