"""Pipeline command group."""

import click

from rolloutctl.core.context import pass_context, RolloutContext
from rolloutctl.core.exceptions import RolloutError
from rolloutctl.core.output import OutputFormat, format_percent
from rolloutctl.deploy.models import (
    Environment,
    Pipeline,
    PipelineStatus,
    StageDefinition,
    StageResult,
    default_stage_definitions,
)
from rolloutctl.deploy.pipeline import parse_environment
from rolloutctl.deploy.status import format_duration_ms, status_styles

ENVIRONMENTS = [e.value for e in Environment]


def pipeline_row(pipeline: Pipeline) -> dict[str, str]:
    """Summary row for pipeline tables."""
    current = pipeline.current_stage
    return {
        "id": pipeline.id,
        "name": pipeline.name,
        "environment": pipeline.environment.value,
        "version": pipeline.version,
        "status": pipeline.status.value,
        "progress": format_percent(pipeline.progress, 0),
        "stage": current.name if current else "-",
        "duration": format_duration_ms(pipeline.duration_ms),
    }


@click.group()
@pass_context
def pipeline(ctx: RolloutContext) -> None:
    """Deployment pipelines - create, track, mark stage results.

    \b
    Examples:
        rolloutctl pipeline create --env staging --branch main --commit a1b2c3d --version v2.1.0
        rolloutctl pipeline list --status running
        rolloutctl pipeline mark pipeline-1a2b3c4d deploy --result success
    """
    pass


@pipeline.command("create")
@click.option("--env", "environment", type=click.Choice(ENVIRONMENTS), required=True, help="Target environment")
@click.option("--branch", required=True, help="Source branch")
@click.option("--commit", "commit_hash", required=True, help="Commit hash")
@click.option("--version", "version", required=True, help="Release version")
@click.option("--by", "deployed_by", default="cli", help="Who requested the deployment")
@click.option("--name", default=None, help="Pipeline name")
@click.option("--gate", "gates", multiple=True, metavar="STAGE_ID", help="Stage that waits for an explicit result")
@click.option("--deferred", is_flag=True, help="Create idle; start later with 'pipeline start'")
@pass_context
def create(
    ctx: RolloutContext,
    environment: str,
    branch: str,
    commit_hash: str,
    version: str,
    deployed_by: str,
    name: str | None,
    gates: tuple[str, ...],
    deferred: bool,
) -> None:
    """Create a deployment pipeline.

    \b
    Examples:
        rolloutctl pipeline create --env production --branch main --commit a1b2c3d --version v2.1.0
        rolloutctl pipeline create --env staging --branch main --commit a1b2c3d --version v2.1.0 --gate deploy
    """
    try:
        env = parse_environment(environment)
        stages = None
        if gates:
            defaults = default_stage_definitions(env)
            known = {d.id for d in defaults}
            unknown = sorted(set(gates) - known)
            if unknown:
                ctx.output.print_error(
                    f"Unknown stage(s) {', '.join(unknown)}. Choose from: {', '.join(sorted(known))}"
                )
                raise click.Abort()
            stages = [StageDefinition(d.id, d.name, gated=d.id in gates) for d in defaults]

        orchestrator = ctx.orchestrator
        pipeline_id = orchestrator.request_deployment(
            environment=env,
            branch=branch,
            commit_hash=commit_hash,
            version=version,
            deployed_by=deployed_by,
            name=name,
            stages=stages,
            deferred=deferred,
        )
        ctx.save()

        ctx.output.print_success(f"Pipeline {pipeline_id} created")
        if ctx.output_format != OutputFormat.TABLE:
            ctx.output.print_data(orchestrator.get_pipeline(pipeline_id).to_dict())

    except RolloutError as e:
        ctx.output.print_error(f"Failed to create pipeline: {e}")
        raise click.Abort()


@pipeline.command("list")
@click.option("--status", type=click.Choice([s.value for s in PipelineStatus]), default=None, help="Filter by status")
@click.option("--env", "environment", type=click.Choice(ENVIRONMENTS), default=None, help="Filter by environment")
@pass_context
def list_pipelines(ctx: RolloutContext, status: str | None, environment: str | None) -> None:
    """List pipelines, newest first.

    \b
    Examples:
        rolloutctl pipeline list
        rolloutctl pipeline list --status failed --env production
    """
    try:
        pipelines = ctx.orchestrator.list_pipelines(status=status, environment=environment)

        if not pipelines:
            ctx.output.print_info("No pipelines found")
            return

        ctx.output.print_data(
            [pipeline_row(p) for p in pipelines],
            headers=["id", "name", "environment", "version", "status", "progress", "stage", "duration"],
            title="Pipelines",
            styles=status_styles(),
        )

    except RolloutError as e:
        ctx.output.print_error(f"Failed to list pipelines: {e}")
        raise click.Abort()


@pipeline.command("status")
@click.argument("pipeline_id")
@pass_context
def status(ctx: RolloutContext, pipeline_id: str) -> None:
    """Show pipeline and stage details.

    \b
    Examples:
        rolloutctl pipeline status pipeline-1a2b3c4d
    """
    try:
        pipeline = ctx.orchestrator.get_pipeline(pipeline_id)

        if ctx.output_format != OutputFormat.TABLE:
            ctx.output.print_data(pipeline.to_dict())
            return

        summary = pipeline_row(pipeline)
        summary.update({
            "branch": pipeline.branch,
            "commit": pipeline.commit_hash,
            "deployed_by": pipeline.deployed_by,
            "revision": str(pipeline.revision),
        })
        if pipeline.message:
            summary["message"] = pipeline.message
        ctx.output.print_data(summary, title=f"Pipeline: {pipeline.id}", styles=status_styles())

        rows = [
            {
                "stage": s.id,
                "name": s.name,
                "status": s.status.value,
                "gated": "yes" if s.gated else "",
                "duration": format_duration_ms(s.duration_ms),
                "last log": s.logs[-1] if s.logs else "",
            }
            for s in pipeline.stages
        ]
        ctx.output.print_data(rows, title="Stages", styles=status_styles())

    except RolloutError as e:
        ctx.output.print_error(f"Failed to get status: {e}")
        raise click.Abort()


@pipeline.command("mark")
@click.argument("pipeline_id")
@click.argument("stage_id")
@click.option("--result", type=click.Choice([r.value for r in StageResult]), required=True, help="Stage outcome")
@click.option("--message", default=None, help="Log line recorded on the stage")
@click.option("--revision", "expected_revision", type=int, default=None, help="Reject if the pipeline changed since this revision")
@pass_context
def mark(
    ctx: RolloutContext,
    pipeline_id: str,
    stage_id: str,
    result: str,
    message: str | None,
    expected_revision: int | None,
) -> None:
    """Report the result of a running stage.

    \b
    Examples:
        rolloutctl pipeline mark pipeline-1a2b3c4d deploy --result success
        rolloutctl pipeline mark pipeline-1a2b3c4d security --result failed --message "CVE found"
    """
    try:
        pipeline = ctx.orchestrator.mark_stage_result(
            pipeline_id, stage_id, result, expected_revision=expected_revision, message=message
        )
        ctx.save()

        if pipeline.status == PipelineStatus.FAILED:
            ctx.output.print_warning(f"Pipeline {pipeline_id} failed: {pipeline.message}")
        elif pipeline.status == PipelineStatus.SUCCESS:
            ctx.output.print_success(f"Pipeline {pipeline_id} completed")
        else:
            ctx.output.print_success(f"Stage '{stage_id}' marked {result}")

    except RolloutError as e:
        ctx.output.print_error(f"Failed to mark stage: {e}")
        raise click.Abort()


def _lifecycle(ctx: RolloutContext, pipeline_id: str, action: str) -> None:
    orchestrator = ctx.orchestrator
    operations = {
        "start": orchestrator.start_pipeline,
        "pause": orchestrator.pause_pipeline,
        "resume": orchestrator.resume_pipeline,
    }
    try:
        pipeline = operations[action](pipeline_id)
        ctx.save()
        ctx.output.print_success(f"Pipeline {pipeline_id} {pipeline.status.value}")
    except RolloutError as e:
        ctx.output.print_error(f"Failed to {action} pipeline: {e}")
        raise click.Abort()


@pipeline.command("start")
@click.argument("pipeline_id")
@pass_context
def start(ctx: RolloutContext, pipeline_id: str) -> None:
    """Start a deferred pipeline."""
    _lifecycle(ctx, pipeline_id, "start")


@pipeline.command("pause")
@click.argument("pipeline_id")
@pass_context
def pause(ctx: RolloutContext, pipeline_id: str) -> None:
    """Pause a running pipeline."""
    _lifecycle(ctx, pipeline_id, "pause")


@pipeline.command("resume")
@click.argument("pipeline_id")
@pass_context
def resume(ctx: RolloutContext, pipeline_id: str) -> None:
    """Resume a paused pipeline."""
    _lifecycle(ctx, pipeline_id, "resume")
