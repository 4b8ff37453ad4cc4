"""rolloutctl - deployment pipeline, canary and infrastructure orchestration."""

__version__ = "0.1.0"
