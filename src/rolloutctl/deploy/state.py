"""Orchestrator state persistence."""

import json
from pathlib import Path
from typing import Any

from rolloutctl.config import ResourceConfig
from rolloutctl.core.exceptions import StateError
from rolloutctl.core.logging import StructuredLogger
from rolloutctl.deploy.models import (
    CanaryDeployment,
    DeploymentRecord,
    InfrastructureResource,
    Pipeline,
)
from rolloutctl.deploy.orchestrator import DeploymentOrchestrator

logger = StructuredLogger(__name__)

HISTORY_FILE = "history.json"
RESOURCES_FILE = "resources.json"


def resource_from_config(resource: ResourceConfig) -> InfrastructureResource:
    """Build a tracked resource from its configuration entry."""
    return InfrastructureResource.from_dict(resource.model_dump())


class OrchestratorState:
    """Persist orchestrator contents as JSON files.

    Layout::

        <state_dir>/pipelines/<id>.json
        <state_dir>/canaries/<id>.json
        <state_dir>/history.json
        <state_dir>/resources.json
    """

    def __init__(self, state_dir: str | Path | None = None):
        """Initialize state store.

        Args:
            state_dir: Directory to store state in
        """
        self._state_dir = Path(state_dir) if state_dir else Path.home() / ".rolloutctl" / "state"
        try:
            (self._state_dir / "pipelines").mkdir(parents=True, exist_ok=True)
            (self._state_dir / "canaries").mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateError(f"Cannot create state directory: {e}", path=str(self._state_dir))

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def load_pipelines(self) -> list[Pipeline]:
        try:
            return [Pipeline.from_dict(d) for d in self._load_dir("pipelines")]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StateError(f"Corrupt pipeline state: {e}", path=str(self._state_dir / "pipelines"))

    def load_canaries(self) -> list[CanaryDeployment]:
        try:
            return [CanaryDeployment.from_dict(d) for d in self._load_dir("canaries")]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StateError(f"Corrupt canary state: {e}", path=str(self._state_dir / "canaries"))

    def load_history(self) -> list[DeploymentRecord]:
        data = self._read(self._state_dir / HISTORY_FILE, default=[])
        try:
            return [DeploymentRecord.from_dict(r) for r in data]
        except (KeyError, TypeError, ValueError) as e:
            raise StateError(f"Corrupt deployment history: {e}", path=str(self._state_dir / HISTORY_FILE))

    def load_resources(self) -> list[InfrastructureResource] | None:
        """Tracked resources, or None if none were ever saved."""
        path = self._state_dir / RESOURCES_FILE
        if not path.exists():
            return None
        try:
            return [InfrastructureResource.from_dict(r) for r in self._read(path, default=[])]
        except (KeyError, TypeError, ValueError) as e:
            raise StateError(f"Corrupt resource state: {e}", path=str(path))

    def load(self, orchestrator: DeploymentOrchestrator) -> DeploymentOrchestrator:
        """Restore saved entities into an orchestrator.

        Resources come from configuration the first time a state directory is
        used.
        """
        resources = self.load_resources()
        if resources is None:
            resources = [resource_from_config(r) for r in orchestrator.config.infrastructure.resources]

        orchestrator.restore(
            pipelines=self.load_pipelines(),
            canaries=self.load_canaries(),
            resources=resources,
            history=self.load_history(),
        )
        return orchestrator

    def save(self, orchestrator: DeploymentOrchestrator) -> None:
        """Write every entity the orchestrator owns."""
        for pipeline in orchestrator.list_pipelines():
            self.save_pipeline(pipeline)
        for canary in orchestrator.list_canaries():
            self.save_canary(canary)
        self._write(
            self._state_dir / HISTORY_FILE,
            [r.to_dict() for r in orchestrator.aggregator.history()],
        )
        snapshot = orchestrator.get_infrastructure_snapshot()
        self._write(self._state_dir / RESOURCES_FILE, [r.to_dict() for r in snapshot.resources])
        logger.debug("Saved orchestrator state", path=str(self._state_dir))

    def save_pipeline(self, pipeline: Pipeline) -> None:
        self._write(self._state_dir / "pipelines" / f"{pipeline.id}.json", pipeline.to_dict())

    def save_canary(self, canary: CanaryDeployment) -> None:
        self._write(self._state_dir / "canaries" / f"{canary.id}.json", canary.to_dict())

    def _load_dir(self, name: str) -> list[dict[str, Any]]:
        items = []
        for path in sorted((self._state_dir / name).glob("*.json")):
            items.append(self._read(path, default={}))
        return items

    def _read(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Failed to load state: {e}", path=str(path))

    def _write(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2)
            tmp.replace(path)
        except OSError as e:
            raise StateError(f"Failed to save state: {e}", path=str(path))
