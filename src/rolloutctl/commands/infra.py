"""Infrastructure command group."""

import click

from rolloutctl.core.context import pass_context, RolloutContext
from rolloutctl.core.exceptions import RolloutError
from rolloutctl.core.output import OutputFormat, format_cost, format_percent
from rolloutctl.deploy.models import InfrastructureSnapshot, ResourceStatus
from rolloutctl.deploy.status import status_styles


def _print_snapshot(ctx: RolloutContext, snapshot: InfrastructureSnapshot, status: str | None) -> None:
    if ctx.output_format != OutputFormat.TABLE:
        data = snapshot.to_dict()
        if status:
            data["resources"] = [r for r in data["resources"] if r["status"] == status]
        ctx.output.print_data(data)
        return

    resources = [r for r in snapshot.resources if status is None or r.status.value == status]
    if not resources:
        ctx.output.print_info("No resources found")
    else:
        rows = [
            {
                "id": r.id,
                "name": r.name,
                "type": r.type.value,
                "status": r.status.value,
                "utilization": format_percent(r.utilization_percent),
                "cost/month": format_cost(r.cost_per_month),
                "region": r.region,
                "auto scaling": "yes" if r.auto_scaling else "no",
            }
            for r in resources
        ]
        ctx.output.print_data(rows, title="Infrastructure", styles=status_styles())

    counts = ", ".join(f"{k}={v}" for k, v in snapshot.status_counts.items() if v)
    ctx.output.print(
        f"Total cost: {format_cost(snapshot.total_monthly_cost)}/month | "
        f"Avg utilization: {format_percent(snapshot.average_utilization_percent)} | {counts or 'no resources'}"
    )


@click.group()
@pass_context
def infra(ctx: RolloutContext) -> None:
    """Infrastructure health - utilization, status and cost.

    \b
    Examples:
        rolloutctl infra status
        rolloutctl infra status --status warning
        rolloutctl infra poll
    """
    pass


@infra.command("status")
@click.option("--status", type=click.Choice([s.value for s in ResourceStatus]), default=None, help="Filter by status")
@pass_context
def status(ctx: RolloutContext, status: str | None) -> None:
    """Show tracked resources without polling."""
    try:
        snapshot = ctx.orchestrator.get_infrastructure_snapshot()
        ctx.save()
        _print_snapshot(ctx, snapshot, status)

    except RolloutError as e:
        ctx.output.print_error(f"Failed to get infrastructure status: {e}")
        raise click.Abort()


@infra.command("poll")
@pass_context
def poll(ctx: RolloutContext) -> None:
    """Refresh utilization for every resource."""
    try:
        snapshot = ctx.orchestrator.poll_infrastructure()
        ctx.save()
        _print_snapshot(ctx, snapshot, None)

    except RolloutError as e:
        ctx.output.print_error(f"Failed to poll infrastructure: {e}")
        raise click.Abort()
