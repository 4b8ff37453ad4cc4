"""Tick and run commands that drive simulated time."""

import asyncio

import click

from rolloutctl.core.context import pass_context, RolloutContext
from rolloutctl.core.exceptions import RolloutError
from rolloutctl.deploy.models import (
    CanaryDeployment,
    CanaryStatus,
    HealthCheck,
    Pipeline,
    PipelineStatus,
)
from rolloutctl.deploy.orchestrator import DeploymentOrchestrator


def subscribe_output(ctx: RolloutContext, orchestrator: DeploymentOrchestrator) -> None:
    """Echo orchestrator events to the terminal."""

    def pipeline_done(pipeline: Pipeline) -> None:
        if pipeline.status == PipelineStatus.SUCCESS:
            ctx.output.print_success(f"Pipeline {pipeline.id} ({pipeline.name}) succeeded")
        else:
            ctx.output.print_warning(f"Pipeline {pipeline.id} ({pipeline.name}) failed: {pipeline.message}")

    def health_failed(canary: CanaryDeployment, check: HealthCheck) -> None:
        ctx.output.print_warning(f"Canary {canary.id}: {check.name} failing ({check.message})")

    def canary_done(canary: CanaryDeployment) -> None:
        if canary.status == CanaryStatus.SUCCESS:
            ctx.output.print_success(f"Canary {canary.id} promoted")
        else:
            ctx.output.print_warning(f"Canary {canary.id} {canary.status.value}: {canary.message}")

    orchestrator.on_pipeline_completed(pipeline_done)
    orchestrator.on_health_check_failed(health_failed)
    orchestrator.on_canary_completed(canary_done)


def _summary(ctx: RolloutContext, orchestrator: DeploymentOrchestrator) -> None:
    running = orchestrator.list_pipelines(status=PipelineStatus.RUNNING)
    canaries = orchestrator.list_canaries(status=CanaryStatus.RUNNING)
    ctx.output.print_info(f"{len(running)} pipeline(s) and {len(canaries)} canary(ies) still running")


@click.command()
@click.option("--count", default=1, type=click.IntRange(min=1), help="Number of ticks")
@click.option("--elapsed-ms", type=click.FloatRange(min=0), default=None, help="Simulated time per tick (default: tick interval)")
@pass_context
def tick(ctx: RolloutContext, count: int, elapsed_ms: float | None) -> None:
    """Advance pipelines and canaries by one or more ticks.

    \b
    Examples:
        rolloutctl tick
        rolloutctl tick --count 10 --elapsed-ms 3000
    """
    try:
        orchestrator = ctx.orchestrator
        subscribe_output(ctx, orchestrator)

        for _ in range(count):
            orchestrator.tick(elapsed_ms)
        ctx.save()

        _summary(ctx, orchestrator)

    except RolloutError as e:
        ctx.output.print_error(f"Tick failed: {e}")
        raise click.Abort()


async def _run(orchestrator: DeploymentOrchestrator, ticks: int | None) -> None:
    scheduler = orchestrator.scheduler
    task = scheduler.start(ticks)
    try:
        await task
    finally:
        await scheduler.stop()


@click.command()
@click.option("--ticks", type=click.IntRange(min=1), default=None, help="Stop after this many ticks (default: until interrupted)")
@pass_context
def run(ctx: RolloutContext, ticks: int | None) -> None:
    """Run the scheduler on its real-time interval.

    State is saved when the run ends or is interrupted.

    \b
    Examples:
        rolloutctl run --ticks 20
    """
    try:
        orchestrator = ctx.orchestrator
        subscribe_output(ctx, orchestrator)
        ctx.output.print_info(f"Ticking every {orchestrator.scheduler.interval_ms}ms")

        try:
            asyncio.run(_run(orchestrator, ticks))
        except KeyboardInterrupt:
            ctx.output.print_info("Interrupted")
        finally:
            ctx.save()

        ctx.output.print_info(f"Performed {orchestrator.scheduler.tick_count} tick(s)")
        _summary(ctx, orchestrator)

    except RolloutError as e:
        ctx.output.print_error(f"Run failed: {e}")
        raise click.Abort()
