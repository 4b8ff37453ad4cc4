"""Deployment orchestration module."""

from rolloutctl.deploy.canary import AutoRollbackPolicy, CanaryController
from rolloutctl.deploy.infrastructure import InfrastructureMonitor
from rolloutctl.deploy.metrics import DeploymentMetricsAggregator
from rolloutctl.deploy.models import (
    CanaryDeployment,
    CanaryStatus,
    Environment,
    HealthCheck,
    HealthStatus,
    InfrastructureResource,
    Pipeline,
    PipelineStatus,
    RampPolicy,
    Stage,
    StageDefinition,
    StageResult,
    StageStatus,
)
from rolloutctl.deploy.orchestrator import DeploymentOrchestrator
from rolloutctl.deploy.pipeline import FixedIncrement, PipelineEngine, RandomIncrement
from rolloutctl.deploy.scheduler import PipelineScheduler
from rolloutctl.deploy.state import OrchestratorState

__all__ = [
    "AutoRollbackPolicy",
    "CanaryController",
    "CanaryDeployment",
    "CanaryStatus",
    "DeploymentMetricsAggregator",
    "DeploymentOrchestrator",
    "Environment",
    "FixedIncrement",
    "HealthCheck",
    "HealthStatus",
    "InfrastructureMonitor",
    "InfrastructureResource",
    "OrchestratorState",
    "Pipeline",
    "PipelineEngine",
    "PipelineScheduler",
    "PipelineStatus",
    "RampPolicy",
    "RandomIncrement",
    "Stage",
    "StageDefinition",
    "StageResult",
    "StageStatus",
]
