"""Status derivation shared by every entity type.

Display layers ask this module how a status should look instead of keeping
their own switch statements.
"""

from enum import Enum
from typing import Iterable

from rolloutctl.deploy.models import (
    CanaryStatus,
    PipelineStatus,
    Stage,
    StageStatus,
)


class StatusTone(str, Enum):
    """Display-neutral status category."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    ACTIVE = "active"
    MUTED = "muted"


_TONES: dict[str, StatusTone] = {
    "success": StatusTone.SUCCESS,
    "healthy": StatusTone.SUCCESS,
    "pass": StatusTone.SUCCESS,
    "warning": StatusTone.WARNING,
    "rollback": StatusTone.WARNING,
    "paused": StatusTone.WARNING,
    "failed": StatusTone.ERROR,
    "critical": StatusTone.ERROR,
    "fail": StatusTone.ERROR,
    "running": StatusTone.ACTIVE,
    "provisioning": StatusTone.ACTIVE,
}

TONE_STYLES: dict[StatusTone, str] = {
    StatusTone.SUCCESS: "green",
    StatusTone.WARNING: "yellow",
    StatusTone.ERROR: "red",
    StatusTone.ACTIVE: "cyan",
    StatusTone.MUTED: "dim",
}

_TERMINAL = {
    PipelineStatus.SUCCESS.value,
    PipelineStatus.FAILED.value,
    CanaryStatus.ROLLBACK.value,
    StageStatus.SKIPPED.value,
}


def _value(status: Enum | str) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def status_tone(status: Enum | str) -> StatusTone:
    """Map any pipeline, stage, canary, health or resource status to a tone."""
    return _TONES.get(_value(status), StatusTone.MUTED)


def tone_style(status: Enum | str) -> str:
    """Rich style for a status."""
    return TONE_STYLES[status_tone(status)]


def status_styles() -> dict[str, str]:
    """Style lookup for every known status value, for table rendering."""
    return {value: TONE_STYLES[tone] for value, tone in _TONES.items()}


def is_terminal(status: Enum | str) -> bool:
    """Whether a pipeline, stage or canary status can no longer change."""
    return _value(status) in _TERMINAL


def derive_pipeline_status(stages: Iterable[Stage], current: PipelineStatus) -> PipelineStatus:
    """Overall pipeline status implied by its stages.

    Operator-held states (idle, paused) are kept unless a stage has already
    decided the outcome.
    """
    stages = list(stages)
    if any(s.status == StageStatus.FAILED for s in stages):
        return PipelineStatus.FAILED
    if stages and all(s.status == StageStatus.SUCCESS for s in stages):
        return PipelineStatus.SUCCESS
    if current in (PipelineStatus.IDLE, PipelineStatus.PAUSED):
        return current
    return PipelineStatus.RUNNING


def format_duration_ms(ms: int | float | None) -> str:
    """Render milliseconds as ``"<m>m <s>s"``."""
    if not ms:
        return "N/A"
    minutes = int(ms // 60000)
    seconds = int((ms % 60000) // 1000)
    return f"{minutes}m {seconds}s"
