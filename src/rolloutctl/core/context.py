"""Click context object for sharing state across commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from rolloutctl.config import RolloutConfig, get_default_config
from rolloutctl.core.output import OutputFormat, OutputFormatter
from rolloutctl.core.logging import resolve_level, setup_logging, StructuredLogger

if TYPE_CHECKING:
    from rolloutctl.deploy.orchestrator import DeploymentOrchestrator
    from rolloutctl.deploy.state import OrchestratorState


class RolloutContext:
    """Shared context object for rolloutctl commands.

    Holds configuration and output settings, and lazily loads the
    orchestrator from the state directory on first use.
    """

    def __init__(
        self,
        config: RolloutConfig | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        color: bool = True,
        state_dir: str | Path | None = None,
    ):
        self._config = config or get_default_config()

        # CLI overrides config
        self._output_format = output_format or self._config.global_settings.output_format
        self._verbose = verbose
        self._quiet = quiet
        self._color = color
        self._state_dir = Path(state_dir) if state_dir else self._config.global_settings.get_state_dir()

        log_level = resolve_level(verbose, quiet, self._config.global_settings.verbosity)
        setup_logging(log_level, rich_output=color)
        self._logger = StructuredLogger("context")

        self._output = OutputFormatter(
            format=self._output_format,
            color=color,
            quiet=quiet,
        )

        self._state: OrchestratorState | None = None
        self._orchestrator: DeploymentOrchestrator | None = None

    @property
    def config(self) -> RolloutConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def output(self) -> OutputFormatter:
        """Get the output formatter."""
        return self._output

    @property
    def output_format(self) -> OutputFormat:
        return self._output_format

    @property
    def verbose(self) -> int:
        return self._verbose

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def color(self) -> bool:
        return self._color

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def state(self) -> "OrchestratorState":
        """Get or create the state store."""
        if self._state is None:
            from rolloutctl.deploy.state import OrchestratorState

            self._state = OrchestratorState(self._state_dir)
        return self._state

    @property
    def orchestrator(self) -> "DeploymentOrchestrator":
        """Get the orchestrator, restored from the state directory."""
        if self._orchestrator is None:
            from rolloutctl.deploy.orchestrator import DeploymentOrchestrator

            self._orchestrator = self.state.load(DeploymentOrchestrator(config=self._config))
            self._logger.debug("Orchestrator loaded", state_dir=str(self._state_dir))
        return self._orchestrator

    def save(self) -> None:
        """Persist the orchestrator if it was loaded."""
        if self._orchestrator is not None:
            self.state.save(self._orchestrator)


# Click decorator for passing context
pass_context = click.make_pass_decorator(RolloutContext, ensure=True)
