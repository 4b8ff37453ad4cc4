"""Deployment data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid

from rolloutctl.core.clock import ensure_utc


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return ensure_utc(datetime.fromisoformat(value)) if value else None


class Environment(str, Enum):
    """Deployment target environments."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class PipelineStatus(str, Enum):
    """Pipeline status."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PAUSED = "paused"


class StageStatus(str, Enum):
    """Stage status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageResult(str, Enum):
    """Externally reported stage outcome."""

    SUCCESS = "success"
    FAILED = "failed"


class CanaryStatus(str, Enum):
    """Canary rollout status."""

    PREPARING = "preparing"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLBACK = "rollback"


class HealthStatus(str, Enum):
    """Health check result."""

    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class ResourceType(str, Enum):
    """Infrastructure resource types."""

    COMPUTE = "compute"
    STORAGE = "storage"
    NETWORK = "network"
    DATABASE = "database"
    CACHE = "cache"


class ResourceStatus(str, Enum):
    """Infrastructure resource status."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    PROVISIONING = "provisioning"
    TERMINATING = "terminating"


class DeploymentKind(str, Enum):
    """What produced a history record."""

    PIPELINE = "pipeline"
    CANARY = "canary"


class DeploymentOutcome(str, Enum):
    """Terminal outcome recorded in deployment history."""

    SUCCESS = "success"
    FAILED = "failed"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class StageDefinition:
    """Declared pipeline stage."""

    id: str
    name: str
    gated: bool = False


def default_stage_definitions(environment: Environment) -> list[StageDefinition]:
    """Build, scan and deploy stages used when none are declared."""
    return [
        StageDefinition("build", "Build & Test"),
        StageDefinition("security", "Security Scan"),
        StageDefinition("deploy", f"Deploy to {environment.value}"),
    ]


@dataclass
class Stage:
    """One step of a deployment pipeline."""

    id: str
    name: str
    status: StageStatus = StageStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    logs: list[str] = field(default_factory=list)
    gated: bool = False

    @property
    def duration_ms(self) -> int | None:
        """Milliseconds between start and end, once both are known."""
        if self.start_time and self.end_time:
            return int((self.end_time - self.start_time).total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_ms": self.duration_ms,
            "logs": list(self.logs),
            "gated": self.gated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Stage":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            status=StageStatus(data.get("status", "pending")),
            start_time=_parse(data.get("start_time")),
            end_time=_parse(data.get("end_time")),
            logs=list(data.get("logs", [])),
            gated=data.get("gated", False),
        )


@dataclass
class Pipeline:
    """Deployment pipeline instance."""

    # Identity
    id: str = field(default_factory=lambda: _new_id("pipeline"))
    name: str = ""
    environment: Environment = Environment.DEVELOPMENT

    # Source
    deployed_by: str = ""
    commit_hash: str = ""
    branch: str = ""
    version: str = ""

    # Status
    status: PipelineStatus = PipelineStatus.IDLE
    progress: float = 0.0  # 0-100
    stages: list[Stage] = field(default_factory=list)
    message: str = ""

    # Timing
    created_at: datetime = field(default_factory=_utcnow)
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_ms: float = 0.0  # simulated time since start

    # Bumped on every mutation
    revision: int = 0

    @property
    def duration_ms(self) -> int | None:
        """Pipeline duration in milliseconds, once finished."""
        if self.start_time and self.end_time:
            return int((self.end_time - self.start_time).total_seconds() * 1000)
        return None

    @property
    def is_terminal(self) -> bool:
        """Check if pipeline is finished."""
        return self.status in (PipelineStatus.SUCCESS, PipelineStatus.FAILED)

    @property
    def current_stage(self) -> Stage | None:
        """The running stage, if any."""
        for stage in self.stages:
            if stage.status == StageStatus.RUNNING:
                return stage
        return None

    def stage(self, stage_id: str) -> Stage | None:
        """Look up a stage by id."""
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "environment": self.environment.value,
            "status": self.status.value,
            "progress": round(self.progress, 2),
            "deployed_by": self.deployed_by,
            "commit_hash": self.commit_hash,
            "branch": self.branch,
            "version": self.version,
            "message": self.message,
            "created_at": _iso(self.created_at),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration_ms": self.duration_ms,
            "elapsed_ms": self.elapsed_ms,
            "revision": self.revision,
            "stages": [s.to_dict() for s in self.stages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Pipeline":
        """Create from dictionary."""
        pipeline = cls(
            id=data.get("id", _new_id("pipeline")),
            name=data.get("name", ""),
            environment=Environment(data.get("environment", "development")),
            deployed_by=data.get("deployed_by", ""),
            commit_hash=data.get("commit_hash", ""),
            branch=data.get("branch", ""),
            version=data.get("version", ""),
            status=PipelineStatus(data.get("status", "idle")),
            progress=float(data.get("progress", 0.0)),
            stages=[Stage.from_dict(s) for s in data.get("stages", [])],
            message=data.get("message", ""),
            start_time=_parse(data.get("start_time")),
            end_time=_parse(data.get("end_time")),
            elapsed_ms=float(data.get("elapsed_ms", 0.0)),
            revision=int(data.get("revision", 0)),
        )
        if data.get("created_at"):
            pipeline.created_at = _parse(data["created_at"])
        return pipeline


@dataclass
class CanaryMetrics:
    """Live canary metrics."""

    error_rate_percent: float = 0.08
    response_time_ms: float = 245.0
    throughput_per_min: float = 1240.0
    user_satisfaction: float = 4.7  # 0-5
    memory_usage_percent: float = 60.0
    db_connection_error_percent: float = 0.0  # failed connection attempts

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error_rate_percent": round(self.error_rate_percent, 4),
            "response_time_ms": round(self.response_time_ms, 2),
            "throughput_per_min": round(self.throughput_per_min, 2),
            "user_satisfaction": round(self.user_satisfaction, 2),
            "memory_usage_percent": round(self.memory_usage_percent, 2),
            "db_connection_error_percent": round(self.db_connection_error_percent, 4),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CanaryMetrics":
        """Create from dictionary."""
        defaults = cls()
        return cls(
            error_rate_percent=float(data.get("error_rate_percent", defaults.error_rate_percent)),
            response_time_ms=float(data.get("response_time_ms", defaults.response_time_ms)),
            throughput_per_min=float(data.get("throughput_per_min", defaults.throughput_per_min)),
            user_satisfaction=float(data.get("user_satisfaction", defaults.user_satisfaction)),
            memory_usage_percent=float(data.get("memory_usage_percent", defaults.memory_usage_percent)),
            db_connection_error_percent=float(
                data.get("db_connection_error_percent", defaults.db_connection_error_percent)
            ),
        )


@dataclass(frozen=True)
class HealthCheck:
    """Result of one canary health check."""

    name: str
    status: HealthStatus
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"name": self.name, "status": self.status.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HealthCheck":
        """Create from dictionary."""
        return cls(name=data["name"], status=HealthStatus(data["status"]), message=data.get("message", ""))


@dataclass
class RampPolicy:
    """How a canary shifts traffic toward the new version."""

    initial_percent: float = 10.0
    step_percent: float = 5.0
    target_percent: float = 100.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "initial_percent": self.initial_percent,
            "step_percent": self.step_percent,
            "target_percent": self.target_percent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RampPolicy":
        """Create from dictionary."""
        return cls(
            initial_percent=float(data.get("initial_percent", 10.0)),
            step_percent=float(data.get("step_percent", 5.0)),
            target_percent=float(data.get("target_percent", 100.0)),
        )


@dataclass
class CanaryDeployment:
    """Canary rollout instance."""

    id: str = field(default_factory=lambda: _new_id("canary"))
    name: str = ""
    target_version: str = ""
    current_version: str = ""

    status: CanaryStatus = CanaryStatus.PREPARING
    traffic_split_percent: float = 0.0  # 0-100
    ramp: RampPolicy = field(default_factory=RampPolicy)
    message: str = ""

    metrics: CanaryMetrics = field(default_factory=CanaryMetrics)
    health_checks: list[HealthCheck] = field(default_factory=list)
    baseline_response_time_ms: float = 0.0

    created_at: datetime = field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        """Check if the rollout is finished."""
        return self.status in (CanaryStatus.SUCCESS, CanaryStatus.FAILED, CanaryStatus.ROLLBACK)

    @property
    def duration_ms(self) -> int | None:
        """Rollout duration in milliseconds, once finished."""
        if self.started_at and self.completed_at:
            return int((self.completed_at - self.started_at).total_seconds() * 1000)
        return None

    @property
    def failing_checks(self) -> list[HealthCheck]:
        return [c for c in self.health_checks if c.status == HealthStatus.FAIL]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "target_version": self.target_version,
            "current_version": self.current_version,
            "status": self.status.value,
            "traffic_split_percent": round(self.traffic_split_percent, 2),
            "ramp": self.ramp.to_dict(),
            "message": self.message,
            "metrics": self.metrics.to_dict(),
            "health_checks": [c.to_dict() for c in self.health_checks],
            "baseline_response_time_ms": self.baseline_response_time_ms,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CanaryDeployment":
        """Create from dictionary."""
        canary = cls(
            id=data.get("id", _new_id("canary")),
            name=data.get("name", ""),
            target_version=data.get("target_version", ""),
            current_version=data.get("current_version", ""),
            status=CanaryStatus(data.get("status", "preparing")),
            traffic_split_percent=float(data.get("traffic_split_percent", 0.0)),
            ramp=RampPolicy.from_dict(data.get("ramp", {})),
            message=data.get("message", ""),
            metrics=CanaryMetrics.from_dict(data.get("metrics", {})),
            health_checks=[HealthCheck.from_dict(c) for c in data.get("health_checks", [])],
            baseline_response_time_ms=float(data.get("baseline_response_time_ms", 0.0)),
            started_at=_parse(data.get("started_at")),
            completed_at=_parse(data.get("completed_at")),
        )
        if data.get("created_at"):
            canary.created_at = _parse(data["created_at"])
        return canary


@dataclass
class InfrastructureResource:
    """Externally owned resource watched by the monitor."""

    id: str
    type: ResourceType
    name: str
    status: ResourceStatus = ResourceStatus.HEALTHY
    utilization_percent: float = 0.0  # 0-100
    cost_per_month: float = 0.0
    region: str = "us-east-1"
    auto_scaling: bool = False
    tags: list[str] = field(default_factory=list)
    last_updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "status": self.status.value,
            "utilization_percent": round(self.utilization_percent, 2),
            "cost_per_month": self.cost_per_month,
            "region": self.region,
            "auto_scaling": self.auto_scaling,
            "tags": list(self.tags),
            "last_updated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InfrastructureResource":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            type=ResourceType(data["type"]),
            name=data.get("name", data["id"]),
            status=ResourceStatus(data.get("status", "healthy")),
            utilization_percent=float(data.get("utilization_percent", 0.0)),
            cost_per_month=float(data.get("cost_per_month", 0.0)),
            region=data.get("region", "us-east-1"),
            auto_scaling=data.get("auto_scaling", False),
            tags=list(data.get("tags", [])),
            last_updated=_parse(data.get("last_updated")),
        )


@dataclass
class InfrastructureSnapshot:
    """Point-in-time view of all tracked resources."""

    taken_at: datetime
    resources: list[InfrastructureResource] = field(default_factory=list)
    total_monthly_cost: float = 0.0
    status_counts: dict[str, int] = field(default_factory=dict)
    average_utilization_percent: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "taken_at": _iso(self.taken_at),
            "total_monthly_cost": round(self.total_monthly_cost, 2),
            "average_utilization_percent": round(self.average_utilization_percent, 2),
            "status_counts": dict(self.status_counts),
            "resources": [r.to_dict() for r in self.resources],
        }


@dataclass(frozen=True)
class DeploymentRecord:
    """Immutable history entry for a finished deployment."""

    entity_id: str
    kind: DeploymentKind
    name: str
    environment: Environment
    outcome: DeploymentOutcome
    started_at: datetime | None
    ended_at: datetime
    duration_ms: int | None = None
    performance_delta_percent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "name": self.name,
            "environment": self.environment.value,
            "outcome": self.outcome.value,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration_ms": self.duration_ms,
            "performance_delta_percent": self.performance_delta_percent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentRecord":
        """Create from dictionary."""
        return cls(
            entity_id=data["entity_id"],
            kind=DeploymentKind(data.get("kind", "pipeline")),
            name=data.get("name", ""),
            environment=Environment(data.get("environment", "development")),
            outcome=DeploymentOutcome(data["outcome"]),
            started_at=_parse(data.get("started_at")),
            ended_at=_parse(data["ended_at"]),
            duration_ms=data.get("duration_ms"),
            performance_delta_percent=data.get("performance_delta_percent"),
        )


@dataclass
class DeploymentMetrics:
    """Fleet-level KPIs derived from deployment history."""

    total_deployments: int = 0
    success_rate_percent: float = 0.0
    avg_deployment_time_minutes: float = 0.0
    mean_time_to_recovery_minutes: float = 0.0
    deployment_frequency_per_day: float = 0.0
    rollback_rate_percent: float = 0.0
    uptime_percent: float = 100.0
    performance_impact_percent: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_deployments": self.total_deployments,
            "success_rate_percent": round(self.success_rate_percent, 2),
            "avg_deployment_time_minutes": round(self.avg_deployment_time_minutes, 2),
            "mean_time_to_recovery_minutes": round(self.mean_time_to_recovery_minutes, 2),
            "deployment_frequency_per_day": round(self.deployment_frequency_per_day, 2),
            "rollback_rate_percent": round(self.rollback_rate_percent, 2),
            "uptime_percent": round(self.uptime_percent, 3),
            "performance_impact_percent": round(self.performance_impact_percent, 2),
        }
