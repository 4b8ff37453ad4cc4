"""Canary command group."""

import click

from rolloutctl.core.context import pass_context, RolloutContext
from rolloutctl.core.exceptions import RolloutError
from rolloutctl.core.output import OutputFormat, format_percent
from rolloutctl.deploy.models import CanaryDeployment, CanaryStatus, RampPolicy
from rolloutctl.deploy.status import format_duration_ms, status_styles


def canary_row(canary: CanaryDeployment) -> dict[str, str]:
    """Summary row for canary tables."""
    m = canary.metrics
    return {
        "id": canary.id,
        "name": canary.name,
        "versions": f"{canary.current_version} -> {canary.target_version}",
        "status": canary.status.value,
        "traffic": format_percent(canary.traffic_split_percent),
        "error rate": f"{m.error_rate_percent:.2f}%",
        "response": f"{m.response_time_ms:.0f}ms",
        "throughput": f"{m.throughput_per_min:.0f}/min",
    }


@click.group()
@pass_context
def canary(ctx: RolloutContext) -> None:
    """Canary rollouts - create, watch health, promote, rollback.

    \b
    Examples:
        rolloutctl canary create --name checkout --current v2.0.3 --target v2.1.0
        rolloutctl canary health canary-1a2b3c4d
        rolloutctl canary promote canary-1a2b3c4d
    """
    pass


@canary.command("create")
@click.option("--name", required=True, help="Service name")
@click.option("--current", "current_version", required=True, help="Stable version")
@click.option("--target", "target_version", required=True, help="Version being rolled out")
@click.option("--initial", "initial_percent", type=float, default=None, help="Initial traffic percent")
@click.option("--step", "step_percent", type=float, default=None, help="Traffic added per tick")
@click.option("--max", "target_percent", type=float, default=None, help="Traffic percent to ramp up to")
@click.option("--deferred", is_flag=True, help="Create in preparing; start later with 'canary start'")
@pass_context
def create(
    ctx: RolloutContext,
    name: str,
    current_version: str,
    target_version: str,
    initial_percent: float | None,
    step_percent: float | None,
    target_percent: float | None,
    deferred: bool,
) -> None:
    """Create a canary rollout.

    \b
    Examples:
        rolloutctl canary create --name checkout --current v2.0.3 --target v2.1.0
        rolloutctl canary create --name checkout --current v2.0.3 --target v2.1.0 --initial 5 --step 2 --max 50
    """
    try:
        defaults = ctx.config.canary
        ramp = RampPolicy(
            initial_percent=defaults.initial_traffic_percent if initial_percent is None else initial_percent,
            step_percent=defaults.ramp_step_percent if step_percent is None else step_percent,
            target_percent=defaults.target_traffic_percent if target_percent is None else target_percent,
        )
        canary_id = ctx.orchestrator.request_canary(
            name=name,
            current_version=current_version,
            target_version=target_version,
            ramp=ramp,
            deferred=deferred,
        )
        ctx.save()

        ctx.output.print_success(f"Canary {canary_id} created")
        if ctx.output_format != OutputFormat.TABLE:
            ctx.output.print_data(ctx.orchestrator.get_canary(canary_id).to_dict())

    except RolloutError as e:
        ctx.output.print_error(f"Failed to create canary: {e}")
        raise click.Abort()


@canary.command("list")
@click.option("--status", type=click.Choice([s.value for s in CanaryStatus]), default=None, help="Filter by status")
@pass_context
def list_canaries(ctx: RolloutContext, status: str | None) -> None:
    """List canary rollouts, newest first."""
    try:
        canaries = ctx.orchestrator.list_canaries(status=status)

        if not canaries:
            ctx.output.print_info("No canaries found")
            return

        ctx.output.print_data(
            [canary_row(c) for c in canaries],
            title="Canary Deployments",
            styles=status_styles(),
        )

    except RolloutError as e:
        ctx.output.print_error(f"Failed to list canaries: {e}")
        raise click.Abort()


@canary.command("status")
@click.argument("canary_id")
@pass_context
def status(ctx: RolloutContext, canary_id: str) -> None:
    """Show canary traffic, metrics and health.

    \b
    Examples:
        rolloutctl canary status canary-1a2b3c4d
    """
    try:
        canary = ctx.orchestrator.get_canary(canary_id)

        if ctx.output_format != OutputFormat.TABLE:
            ctx.output.print_data(canary.to_dict())
            return

        summary = canary_row(canary)
        summary.update({
            "memory": format_percent(canary.metrics.memory_usage_percent),
            "db errors": format_percent(canary.metrics.db_connection_error_percent, 2),
            "satisfaction": f"{canary.metrics.user_satisfaction:.1f}/5",
            "ramp": (
                f"{canary.ramp.initial_percent:g}% +{canary.ramp.step_percent:g}% "
                f"up to {canary.ramp.target_percent:g}%"
            ),
            "duration": format_duration_ms(canary.duration_ms),
        })
        if canary.message:
            summary["message"] = canary.message
        ctx.output.print_data(summary, title=f"Canary: {canary.id}", styles=status_styles())

        if canary.health_checks:
            ctx.output.print_data(
                [c.to_dict() for c in canary.health_checks],
                title="Health Checks",
                styles=status_styles(),
            )

    except RolloutError as e:
        ctx.output.print_error(f"Failed to get status: {e}")
        raise click.Abort()


@canary.command("health")
@click.argument("canary_id")
@pass_context
def health(ctx: RolloutContext, canary_id: str) -> None:
    """Evaluate health checks against current metrics."""
    try:
        checks = ctx.orchestrator.evaluate_canary(canary_id)
        ctx.output.print_data(
            [c.to_dict() for c in checks],
            headers=["name", "status", "message"],
            title="Health Checks",
            styles=status_styles(),
        )

    except RolloutError as e:
        ctx.output.print_error(f"Failed to evaluate health: {e}")
        raise click.Abort()


@canary.command("start")
@click.argument("canary_id")
@pass_context
def start(ctx: RolloutContext, canary_id: str) -> None:
    """Start routing traffic to a deferred canary."""
    try:
        ctx.orchestrator.start_canary(canary_id)
        ctx.save()
        ctx.output.print_success(f"Canary {canary_id} running")

    except RolloutError as e:
        ctx.output.print_error(f"Failed to start canary: {e}")
        raise click.Abort()


@canary.command("promote")
@click.argument("canary_id")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def promote(ctx: RolloutContext, canary_id: str, yes: bool) -> None:
    """Send all traffic to the target version.

    \b
    Examples:
        rolloutctl canary promote canary-1a2b3c4d -y
    """
    try:
        if not yes and not ctx.output.confirm(f"Promote canary {canary_id}?"):
            ctx.output.print_info("Cancelled")
            return

        canary = ctx.orchestrator.promote_canary(canary_id)
        ctx.save()
        ctx.output.print_success(f"Canary {canary_id} promoted to {canary.target_version}")

    except RolloutError as e:
        ctx.output.print_error(f"Promote failed: {e}")
        raise click.Abort()


@canary.command("rollback")
@click.argument("canary_id")
@click.option("--reason", default=None, help="Recorded rollback reason")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def rollback(ctx: RolloutContext, canary_id: str, reason: str | None, yes: bool) -> None:
    """Send all traffic back to the stable version.

    \b
    Examples:
        rolloutctl canary rollback canary-1a2b3c4d --reason "latency regression" -y
    """
    try:
        if not yes and not ctx.output.confirm(f"Rollback canary {canary_id}?"):
            ctx.output.print_info("Cancelled")
            return

        canary = ctx.orchestrator.rollback_canary(canary_id, reason)
        ctx.save()
        ctx.output.print_success(f"Canary {canary_id} rolled back to {canary.current_version}")

    except RolloutError as e:
        ctx.output.print_error(f"Rollback failed: {e}")
        raise click.Abort()
