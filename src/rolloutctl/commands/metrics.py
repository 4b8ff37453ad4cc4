"""Deployment metrics command."""

import click

from rolloutctl.core.context import pass_context, RolloutContext
from rolloutctl.core.exceptions import RolloutError
from rolloutctl.core.output import OutputFormat, format_percent


@click.command()
@click.option("--window-days", type=float, default=None, help="Window length in days (default from config)")
@pass_context
def metrics(ctx: RolloutContext, window_days: float | None) -> None:
    """Show deployment KPIs derived from history.

    \b
    Examples:
        rolloutctl metrics
        rolloutctl metrics --window-days 7 -o json
    """
    try:
        result = ctx.orchestrator.get_metrics(window_days)
        days = window_days if window_days is not None else ctx.config.metrics.window_days

        if ctx.output_format != OutputFormat.TABLE:
            ctx.output.print_data({"window_days": days, **result.to_dict()})
            return

        ctx.output.print_data(
            {
                "Total Deployments": str(result.total_deployments),
                "Success Rate": format_percent(result.success_rate_percent),
                "Avg Deployment Time": f"{result.avg_deployment_time_minutes:.1f}m",
                "Mean Time to Recovery": f"{result.mean_time_to_recovery_minutes:.1f}m",
                "Deployment Frequency": f"{result.deployment_frequency_per_day:.2f}/day",
                "Rollback Rate": format_percent(result.rollback_rate_percent),
                "Uptime": format_percent(result.uptime_percent, 2),
                "Performance Impact": f"{result.performance_impact_percent:+.1f}%",
            },
            title=f"Deployment Metrics (last {days:g} days)",
        )

    except RolloutError as e:
        ctx.output.print_error(f"Failed to compute metrics: {e}")
        raise click.Abort()
