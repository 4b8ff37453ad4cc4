"""Tests for CLI commands.

Every invocation runs against a throwaway state directory and a config file
with a fixed 50-point progress increment, so two ticks finish a default
three-stage pipeline.
"""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from rolloutctl.cli import cli


@pytest.fixture
def fast_config(tmp_path: Path) -> str:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        yaml.dump(
            {
                "version": "1",
                "scheduler": {
                    "tick_interval_ms": 10,
                    "seed": 3,
                    "progress_increment_bounds": {"min": 50, "max": 50},
                },
            }
        )
    )
    return str(config_file)


@pytest.fixture
def rollout(cli_runner: CliRunner, tmp_path: Path, fast_config: str):
    """Invoke the CLI with shared config and state directory."""
    state_dir = tmp_path / "state"

    def _invoke(*args: str, input: str | None = None):
        return cli_runner.invoke(
            cli,
            ["--no-color", "-c", fast_config, "--state-dir", str(state_dir), *args],
            input=input,
        )

    return _invoke


def as_json(result):
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def create_pipeline(rollout, *extra: str) -> str:
    result = rollout(
        "-q", "-o", "json", "pipeline", "create",
        "--env", "staging", "--branch", "main", "--commit", "a1b2c3d", "--version", "v2.1.0",
        *extra,
    )
    return as_json(result)["id"]


def create_canary(rollout, *extra: str) -> str:
    result = rollout(
        "-q", "-o", "json", "canary", "create",
        "--name", "checkout", "--current", "v2.0.3", "--target", "v2.1.0",
        *extra,
    )
    return as_json(result)["id"]


# =============================================================================
# CLI Entry Point
# =============================================================================


class TestCLIEntryPoint:
    """Tests for main CLI entry point, flags, and options."""

    def test_help(self, cli_runner: CliRunner):
        """Test CLI help output."""
        result = cli_runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "rolloutctl" in result.output
        for command in ("pipeline", "canary", "infra", "metrics", "tick", "run", "config"):
            assert command in result.output

    def test_version(self, cli_runner: CliRunner):
        """Test CLI version output."""
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "rolloutctl version" in result.output

    def test_invalid_output_format(self, rollout):
        result = rollout("-o", "xml", "pipeline", "list")
        assert result.exit_code != 0
        assert "Invalid format" in result.output

    def test_config_command(self, rollout):
        data = as_json(rollout("-q", "-o", "json", "config"))
        assert data["scheduler"]["tick_interval_ms"] == 10
        assert data["canary"]["auto_rollback"] is True
        assert data["metrics"]["window_days"] == 30

    def test_config_from_env(self, cli_runner: CliRunner, fast_config: str, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("ROLLOUTCTL_CONFIG", fast_config)
        result = cli_runner.invoke(cli, ["--no-color", "--state-dir", str(tmp_path), "-q", "-o", "json", "config"])
        assert as_json(result)["scheduler"]["seed"] == 3

    def test_invalid_config_file(self, cli_runner: CliRunner, tmp_path: Path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("- not\n- a mapping\n")
        result = cli_runner.invoke(cli, ["-c", str(config_file), "config"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output


# =============================================================================
# Pipeline Commands
# =============================================================================


class TestPipelineCommands:
    """Tests for the pipeline command group."""

    def test_help(self, cli_runner: CliRunner):
        result = cli_runner.invoke(cli, ["pipeline", "--help"])
        assert result.exit_code == 0
        for command in ("create", "list", "status", "mark", "start", "pause", "resume"):
            assert command in result.output

    def test_create(self, rollout):
        result = rollout(
            "-q", "-o", "json", "pipeline", "create",
            "--env", "production", "--branch", "main", "--commit", "a1b2c3d", "--version", "v2.1.0",
            "--by", "alice",
        )
        data = as_json(result)
        assert data["status"] == "running"
        assert data["name"] == "Production Deployment"
        assert data["deployed_by"] == "alice"
        assert [s["id"] for s in data["stages"]] == ["build", "security", "deploy"]

    def test_create_reports_id(self, rollout):
        result = rollout(
            "pipeline", "create", "--env", "staging", "--branch", "main", "--commit", "abc", "--version", "v1",
        )
        assert result.exit_code == 0
        assert "created" in result.output

    def test_create_unknown_gate(self, rollout):
        result = rollout(
            "pipeline", "create", "--env", "staging", "--branch", "main", "--commit", "abc", "--version", "v1",
            "--gate", "smoke",
        )
        assert result.exit_code == 1
        assert "Unknown stage" in result.output

    def test_list_empty(self, rollout):
        result = rollout("pipeline", "list")
        assert result.exit_code == 0
        assert "No pipelines found" in result.output

    def test_list_filters(self, rollout):
        create_pipeline(rollout)
        production = as_json(
            rollout(
                "-q", "-o", "json", "pipeline", "create",
                "--env", "production", "--branch", "main", "--commit", "abc", "--version", "v1",
            )
        )["id"]

        rows = as_json(rollout("-q", "-o", "json", "pipeline", "list", "--env", "production"))
        assert [r["id"] for r in rows] == [production]

        table = rollout("pipeline", "list")
        assert table.exit_code == 0
        assert "Pipelines" in table.output

    def test_ticks_to_success(self, rollout):
        pipeline_id = create_pipeline(rollout)

        result = rollout("tick", "--count", "2", "--elapsed-ms", "0")

        assert result.exit_code == 0
        assert "succeeded" in result.output
        data = as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))
        assert data["status"] == "success"
        assert data["progress"] == 100

    def test_status_table(self, rollout):
        pipeline_id = create_pipeline(rollout)
        result = rollout("pipeline", "status", pipeline_id)
        assert result.exit_code == 0
        assert "Stages" in result.output
        assert "Build & Test" in result.output

    def test_status_unknown(self, rollout):
        result = rollout("pipeline", "status", "pipeline-missing")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_gated_stage_waits_for_mark(self, rollout):
        pipeline_id = create_pipeline(rollout, "--gate", "deploy")
        rollout("tick", "--count", "5", "--elapsed-ms", "0")

        data = as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))
        assert data["status"] == "running"
        assert data["stages"][2]["status"] == "running"
        assert data["progress"] == pytest.approx(83.33)

        result = rollout("pipeline", "mark", pipeline_id, "deploy", "--result", "success")
        assert result.exit_code == 0
        assert "completed" in result.output
        assert as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))["status"] == "success"

    def test_mark_failure_skips_rest(self, rollout):
        pipeline_id = create_pipeline(rollout)

        result = rollout("pipeline", "mark", pipeline_id, "build", "--result", "failed", "--message", "tests red")

        assert result.exit_code == 0
        assert "failed" in result.output
        data = as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))
        assert data["status"] == "failed"
        assert [s["status"] for s in data["stages"]] == ["failed", "skipped", "skipped"]

    def test_mark_stale_revision(self, rollout):
        pipeline_id = create_pipeline(rollout)
        revision = as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))["revision"]
        rollout("tick", "--elapsed-ms", "0")

        result = rollout(
            "pipeline", "mark", pipeline_id, "security", "--result", "success", "--revision", str(revision)
        )

        assert result.exit_code == 1
        assert "Failed to mark stage" in result.output

    def test_mark_invalid_result(self, rollout):
        pipeline_id = create_pipeline(rollout)
        result = rollout("pipeline", "mark", pipeline_id, "build", "--result", "maybe")
        assert result.exit_code == 2

    def test_pause_and_resume(self, rollout):
        pipeline_id = create_pipeline(rollout)

        assert rollout("pipeline", "pause", pipeline_id).exit_code == 0
        rollout("tick", "--count", "3")
        assert as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))["progress"] == 0

        assert rollout("pipeline", "resume", pipeline_id).exit_code == 0
        assert rollout("pipeline", "resume", pipeline_id).exit_code == 1

    def test_deferred_start(self, rollout):
        pipeline_id = create_pipeline(rollout, "--deferred")
        assert as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))["status"] == "idle"

        result = rollout("pipeline", "start", pipeline_id)

        assert result.exit_code == 0
        assert "running" in result.output


# =============================================================================
# Canary Commands
# =============================================================================


class TestCanaryCommands:
    """Tests for the canary command group."""

    def test_help(self, cli_runner: CliRunner):
        result = cli_runner.invoke(cli, ["canary", "--help"])
        assert result.exit_code == 0
        for command in ("create", "list", "status", "health", "start", "promote", "rollback"):
            assert command in result.output

    def test_create_uses_config_ramp(self, rollout):
        canary_id = create_canary(rollout)
        data = as_json(rollout("-q", "-o", "json", "canary", "status", canary_id))
        assert data["status"] == "running"
        assert data["traffic_split_percent"] == 10
        assert data["ramp"]["step_percent"] == 5

    def test_create_invalid_ramp(self, rollout):
        result = rollout(
            "canary", "create", "--name", "checkout", "--current", "v1", "--target", "v2", "--initial", "150",
        )
        assert result.exit_code == 1
        assert "Failed to create canary" in result.output

    def test_tick_ramps_traffic(self, rollout):
        canary_id = create_canary(rollout, "--step", "20")
        rollout("tick", "--elapsed-ms", "0")
        assert as_json(rollout("-q", "-o", "json", "canary", "status", canary_id))["traffic_split_percent"] == 30

    def test_health(self, rollout):
        canary_id = create_canary(rollout)
        result = rollout("canary", "health", canary_id)
        assert result.exit_code == 0
        assert "Error Rate" in result.output
        assert "pass" in result.output

    def test_list(self, rollout):
        canary_id = create_canary(rollout)
        rows = as_json(rollout("-q", "-o", "json", "canary", "list", "--status", "running"))
        assert [r["id"] for r in rows] == [canary_id]

    def test_promote_cancelled(self, rollout):
        canary_id = create_canary(rollout)
        result = rollout("canary", "promote", canary_id, input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert as_json(rollout("-q", "-o", "json", "canary", "status", canary_id))["status"] == "running"

    def test_promote(self, rollout):
        canary_id = create_canary(rollout)

        result = rollout("canary", "promote", canary_id, "-y")

        assert result.exit_code == 0
        data = as_json(rollout("-q", "-o", "json", "canary", "status", canary_id))
        assert data["status"] == "success"
        assert data["current_version"] == "v2.1.0"
        assert as_json(rollout("-q", "-o", "json", "metrics"))["total_deployments"] == 1

    def test_promote_deferred_rejected(self, rollout):
        canary_id = create_canary(rollout, "--deferred")
        result = rollout("canary", "promote", canary_id, "-y")
        assert result.exit_code == 1
        assert "Promote failed" in result.output

        assert rollout("canary", "start", canary_id).exit_code == 0
        assert rollout("canary", "promote", canary_id, "-y").exit_code == 0

    def test_rollback(self, rollout):
        canary_id = create_canary(rollout)

        result = rollout("canary", "rollback", canary_id, "--reason", "latency regression", "-y")

        assert result.exit_code == 0
        data = as_json(rollout("-q", "-o", "json", "canary", "status", canary_id))
        assert data["status"] == "rollback"
        assert data["traffic_split_percent"] == 0
        assert data["message"] == "latency regression"


# =============================================================================
# Infrastructure and Metrics Commands
# =============================================================================


class TestInfraCommands:
    """Tests for the infra command group."""

    def test_status_seeds_resources(self, rollout, tmp_path: Path):
        data = as_json(rollout("-q", "-o", "json", "infra", "status"))
        assert len(data["resources"]) == 4
        assert data["total_monthly_cost"] == pytest.approx(598.30)
        assert (tmp_path / "state" / "resources.json").exists()

    def test_status_filter(self, rollout):
        data = as_json(rollout("-q", "-o", "json", "infra", "status", "--status", "warning"))
        assert [r["id"] for r in data["resources"]] == ["cache-cluster"]

    def test_status_table(self, rollout):
        result = rollout("infra", "status")
        assert result.exit_code == 0
        assert "Total cost: $598.30/month" in result.output

    def test_poll(self, rollout):
        data = as_json(rollout("-q", "-o", "json", "infra", "poll"))
        assert all(r["last_updated"] for r in data["resources"])
        assert all(0 <= r["utilization_percent"] <= 100 for r in data["resources"])


class TestMetricsCommand:
    """Tests for the metrics command."""

    def test_empty_history(self, rollout):
        data = as_json(rollout("-q", "-o", "json", "metrics"))
        assert data["window_days"] == 30
        assert data["total_deployments"] == 0
        assert data["uptime_percent"] == 100

    def test_after_deployments(self, rollout):
        create_pipeline(rollout)
        failed = create_pipeline(rollout)
        rollout("pipeline", "mark", failed, "build", "--result", "failed")
        rollout("tick", "--count", "2", "--elapsed-ms", "0")

        data = as_json(rollout("-q", "-o", "json", "metrics", "--window-days", "7"))

        assert data["window_days"] == 7
        assert data["total_deployments"] == 2
        assert data["success_rate_percent"] == 50

    def test_table(self, rollout):
        result = rollout("metrics")
        assert result.exit_code == 0
        assert "Success Rate" in result.output

    def test_invalid_window(self, rollout):
        result = rollout("metrics", "--window-days", "0")
        assert result.exit_code == 1


# =============================================================================
# Simulation Commands
# =============================================================================


class TestSimulationCommands:
    """Tests for tick and run."""

    def test_tick_count_must_be_positive(self, rollout):
        assert rollout("tick", "--count", "0").exit_code == 2

    def test_tick_summary(self, rollout):
        create_pipeline(rollout)
        result = rollout("tick")
        assert result.exit_code == 0
        assert "1 pipeline(s)" in result.output

    def test_run_ticks(self, rollout):
        pipeline_id = create_pipeline(rollout)

        result = rollout("run", "--ticks", "3")

        assert result.exit_code == 0
        assert "Performed 3 tick(s)" in result.output
        assert as_json(rollout("-q", "-o", "json", "pipeline", "status", pipeline_id))["status"] == "success"
