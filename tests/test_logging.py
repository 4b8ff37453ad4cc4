"""Tests for structured logging."""

import logging
from datetime import datetime, timezone

import pytest

from rolloutctl.core.logging import (
    LogLevel,
    StructuredLogger,
    get_logger,
    render_value,
    resolve_level,
    setup_logging,
)
from rolloutctl.deploy.models import CanaryStatus


class TestStructuredLogger:
    """Tests for StructuredLogger."""

    def test_namespaced(self):
        assert get_logger("plugins").name == "rolloutctl.plugins"
        assert get_logger("rolloutctl").name == "rolloutctl"
        assert get_logger("rolloutctlx").name == "rolloutctl.rolloutctlx"
        assert StructuredLogger("rolloutctl.deploy").name == "rolloutctl.deploy"

    def test_context_appended(self, caplog):
        logger = StructuredLogger("rolloutctl.test")
        with caplog.at_level(logging.INFO, logger="rolloutctl.test"):
            logger.info("Pipeline created", id="pipeline-1", version="v2.1.0")
        assert "Pipeline created [id=pipeline-1 version=v2.1.0]" in caplog.text

    def test_bind_keeps_context(self, caplog):
        base = StructuredLogger("rolloutctl.test")
        logger = base.bind(canary="canary-1")
        with caplog.at_level(logging.WARNING, logger="rolloutctl.test"):
            logger.warning("Health check failed", check="Error Rate")
            base.warning("Unbound")
        assert "[canary=canary-1 check=Error Rate]" in caplog.text
        assert caplog.records[-1].getMessage() == "Unbound"

    def test_domain_values_rendered(self, caplog):
        logger = StructuredLogger("rolloutctl.test")
        with caplog.at_level(logging.INFO, logger="rolloutctl.test"):
            logger.info("Canary ticked", status=CanaryStatus.ROLLBACK, split=15.0, error_rate=0.1)
        assert caplog.records[-1].getMessage() == "Canary ticked [status=rollback split=15 error_rate=0.1]"

    def test_disabled_level_skipped(self, caplog):
        logger = StructuredLogger("rolloutctl.test")
        with caplog.at_level(logging.WARNING, logger="rolloutctl.test"):
            logger.debug("Pipeline advanced", id="pipeline-1")
        assert caplog.records == []


class TestRenderValue:
    """Tests for context value rendering."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (LogLevel.INFO, "info"),
            (20.0, "20"),
            (0.08, "0.08"),
            (66.666, "66.67"),
            (3, "3"),
            ("canary-1", "canary-1"),
            (None, "None"),
        ],
    )
    def test_values(self, value, expected):
        assert render_value(value) == expected

    def test_datetime(self):
        stamp = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert render_value(stamp) == "2024-01-15T10:30:00+00:00"


class TestResolveLevel:
    """Tests for CLI flag resolution."""

    @pytest.mark.parametrize(
        "verbose,quiet,expected",
        [
            (0, False, LogLevel.WARNING),
            (1, False, LogLevel.INFO),
            (2, False, LogLevel.DEBUG),
            (3, False, LogLevel.DEBUG),
            (0, True, LogLevel.ERROR),
            (1, True, LogLevel.INFO),
        ],
    )
    def test_flags(self, verbose, quiet, expected):
        assert resolve_level(verbose, quiet) == expected

    def test_config_default(self):
        assert resolve_level(default=LogLevel.DEBUG) == LogLevel.DEBUG


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_sets_level(self):
        logger = setup_logging(LogLevel.DEBUG, rich_output=False)
        assert logger.name == "rolloutctl"
        assert logger.level == logging.DEBUG

        setup_logging(LogLevel.ERROR, rich_output=False)
        assert logging.getLogger("rolloutctl").level == logging.ERROR

    def test_repeated_setup_replaces_handler(self):
        root_handlers = list(logging.getLogger().handlers)
        for _ in range(3):
            setup_logging(LogLevel.INFO, rich_output=False)
        setup_logging(LogLevel.INFO, rich_output=True)

        handlers = logging.getLogger("rolloutctl").handlers
        assert len(handlers) == 1
        assert logging.getLogger().handlers == root_handlers
