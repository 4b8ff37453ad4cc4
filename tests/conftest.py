"""Pytest fixtures for rolloutctl tests."""

import os
import random
from pathlib import Path
from typing import Generator

import pytest
from click.testing import CliRunner

from rolloutctl.config import RolloutConfig
from rolloutctl.core.clock import ManualClock
from rolloutctl.deploy.canary import CanaryController
from rolloutctl.deploy.infrastructure import InfrastructureMonitor, RandomWalkUtilization
from rolloutctl.deploy.models import Environment, StageDefinition
from rolloutctl.deploy.orchestrator import DeploymentOrchestrator
from rolloutctl.deploy.pipeline import FixedIncrement, PipelineEngine


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def clock() -> ManualClock:
    """Clock frozen at 2024-01-01 00:00 UTC."""
    return ManualClock()


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source."""
    return random.Random(1234)


@pytest.fixture
def engine(clock: ManualClock) -> PipelineEngine:
    """Engine that moves pipelines 20 points per tick."""
    return PipelineEngine(clock=clock, progress_policy=FixedIncrement(20))


@pytest.fixture
def three_stages() -> list[StageDefinition]:
    return [
        StageDefinition("build", "Build & Test"),
        StageDefinition("security", "Security Scan"),
        StageDefinition("deploy", "Deploy to staging"),
    ]


@pytest.fixture
def make_pipeline(engine: PipelineEngine, three_stages: list[StageDefinition]):
    """Factory for pipelines with sensible defaults."""

    def _make(stages: list[StageDefinition] | None = None, deferred: bool = False, **overrides):
        fields = {
            "name": "Staging Deployment",
            "environment": Environment.STAGING,
            "branch": "main",
            "commit_hash": "a1b2c3d",
            "version": "v2.1.0",
            "deployed_by": "alice",
        }
        fields.update(overrides)
        return engine.create_pipeline(
            stage_definitions=stages if stages is not None else three_stages,
            deferred=deferred,
            **fields,
        )

    return _make


@pytest.fixture
def controller(clock: ManualClock, rng: random.Random) -> CanaryController:
    return CanaryController(rng=rng, clock=clock)


@pytest.fixture
def monitor(clock: ManualClock, rng: random.Random) -> InfrastructureMonitor:
    return InfrastructureMonitor(clock=clock, utilization_source=RandomWalkUtilization(5.0, rng))


@pytest.fixture
def config() -> RolloutConfig:
    """Default configuration with a fixed seed."""
    return RolloutConfig(scheduler={"seed": 42})


@pytest.fixture
def orchestrator(config: RolloutConfig, clock: ManualClock) -> DeploymentOrchestrator:
    """Orchestrator with deterministic progress and no resources."""
    return DeploymentOrchestrator(
        config=config,
        clock=clock,
        rng=random.Random(42),
        progress_policy=FixedIncrement(20),
    )


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Empty state directory."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before each test."""
    env_vars = [
        "ROLLOUTCTL_CONFIG",
        "ROLLOUTCTL_STATE_DIR",
        "ROLLOUTCTL_TICK_INTERVAL_MS",
        "ROLLOUTCTL_AUTO_ROLLBACK",
    ]

    original = {k: os.environ.get(k) for k in env_vars}

    for k in env_vars:
        os.environ.pop(k, None)

    yield

    for k, v in original.items():
        if v is not None:
            os.environ[k] = v
        else:
            os.environ.pop(k, None)


@pytest.fixture
def temp_config_file(tmp_path: Path) -> str:
    """Create a temporary config file."""
    config_content = """
version: "1"
global:
  output_format: table
scheduler:
  tick_interval_ms: 10
  seed: 7
canary:
  auto_rollback: false
  ramp_step_percent: 2.5
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return str(config_file)
