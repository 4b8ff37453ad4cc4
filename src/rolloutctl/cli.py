"""Main CLI entry point for rolloutctl."""

import sys
from typing import Any

import click
from rich.console import Console

from rolloutctl import __version__
from rolloutctl.config import load_config
from rolloutctl.core.context import RolloutContext
from rolloutctl.core.output import OutputFormat
from rolloutctl.core.exceptions import RolloutError, ConfigError


CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}


class OutputFormatType(click.ParamType):
    """Custom Click parameter type for output format."""

    name = "format"

    def convert(
        self,
        value: Any,
        param: click.Parameter | None,
        ctx: click.Context | None,
    ) -> OutputFormat:
        if isinstance(value, OutputFormat):
            return value
        try:
            return OutputFormat(value.lower())
        except ValueError:
            self.fail(
                f"Invalid format '{value}'. Choose from: table, json, yaml, raw",
                param,
                ctx,
            )


OUTPUT_FORMAT = OutputFormatType()


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    console = Console()
    console.print(f"rolloutctl version {__version__}")
    ctx.exit()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-o",
    "--output",
    "output_format",
    type=OUTPUT_FORMAT,
    metavar="FORMAT",
    help="Output format: table, json, yaml, raw",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for info, -vv for debug)",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Suppress non-essential output",
)
@click.option(
    "--no-color",
    is_flag=True,
    help="Disable colored output",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    metavar="FILE",
    envvar="ROLLOUTCTL_CONFIG",
    help="Path to config file",
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    metavar="DIR",
    help="Directory holding pipeline, canary and history state",
)
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
@click.pass_context
def cli(
    ctx: click.Context,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    no_color: bool,
    config_file: str | None,
    state_dir: str | None,
) -> None:
    """rolloutctl - deployment pipelines, canary rollouts and infrastructure health.

    Pipelines and canaries advance on scheduler ticks; use 'tick' to step
    simulated time or 'run' to tick on the configured interval.

    \b
    Examples:
        rolloutctl pipeline create --env staging --branch main --commit a1b2c3d --version v2.1.0
        rolloutctl tick --count 5
        rolloutctl canary create --name checkout --current v2.0.3 --target v2.1.0
        rolloutctl metrics

    \b
    Configuration:
        ~/.rolloutctl/config.yaml    User configuration
        ./rolloutctl.yaml            Project configuration
        ROLLOUTCTL_*                 Environment variables
    """
    try:
        config = load_config(config_file)

        ctx.obj = RolloutContext(
            config=config,
            output_format=output_format,
            verbose=verbose,
            quiet=quiet,
            color=not no_color,
            state_dir=state_dir,
        )

    except ConfigError as e:
        console = Console(stderr=True)
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


def register_commands() -> None:
    """Register all command groups."""
    from rolloutctl.commands.pipeline import pipeline
    from rolloutctl.commands.canary import canary
    from rolloutctl.commands.infra import infra
    from rolloutctl.commands.metrics import metrics
    from rolloutctl.commands.simulation import tick, run

    cli.add_command(pipeline)
    cli.add_command(canary)
    cli.add_command(infra)
    cli.add_command(metrics)
    cli.add_command(tick)
    cli.add_command(run)


register_commands()


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Show current configuration."""
    rollout_ctx: RolloutContext = ctx.obj
    settings = rollout_ctx.config
    config_data = {
        "output_format": rollout_ctx.output_format.value,
        "verbose": rollout_ctx.verbose,
        "state_dir": str(rollout_ctx.state_dir),
        "scheduler": {
            "tick_interval_ms": settings.scheduler.get_tick_interval_ms(),
            "progress_increment_bounds": settings.scheduler.progress_increment_bounds.model_dump(),
            "seed": settings.scheduler.seed,
        },
        "canary": {
            "auto_rollback": settings.canary.get_auto_rollback(),
            "ramp_step_percent": settings.canary.ramp_step_percent,
            "initial_traffic_percent": settings.canary.initial_traffic_percent,
            "target_traffic_percent": settings.canary.target_traffic_percent,
        },
        "infrastructure": {
            "warning_threshold_percent": settings.infrastructure.warning_threshold_percent,
            "critical_threshold_percent": settings.infrastructure.critical_threshold_percent,
            "resources": len(settings.infrastructure.resources),
        },
        "metrics": {"window_days": settings.metrics.window_days},
    }
    rollout_ctx.output.print_data(config_data, title="Current Configuration")


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except RolloutError as e:
        console = Console(stderr=True)
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console = Console(stderr=True)
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
