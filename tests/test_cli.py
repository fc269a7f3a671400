import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from dr_reconciler.cli.main import cli
from dr_reconciler.config.parser import ENV_OVERRIDES, POLICY_ENV_OVERRIDES
from dr_reconciler.utils.errors import AccessDeniedError


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    """No environment overrides, no global logging or signal changes."""
    for var in list(ENV_OVERRIDES) + list(POLICY_ENV_OVERRIDES) + ["DRY_RUN", "LOG_LEVEL", "DR_RECONCILE_CONFIG"]:
        monkeypatch.delenv(var, raising=False)
    with patch("dr_reconciler.cli.main.setup_logging"), \
            patch("dr_reconciler.cli.main.install_signal_handlers"):
        yield


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def run_job():
    with patch("dr_reconciler.cli.main.run_job", return_value=0) as mock:
        yield mock


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("clusters:\n  hub: local-cluster\n  managed: [east, west]\n")
    return str(path)


class TestJobsCommand:
    def test_lists_every_job(self, runner):
        with patch("dr_reconciler.cli.main.console", Console(width=200)):
            result = runner.invoke(cli, ["jobs"], obj={})

        assert result.exit_code == 0
        for name in ("dr-prerequisites", "drpc-sync-disable", "submariner-sg-tag", "ca-precheck", "ca-distribution"):
            assert name in result.output


class TestValidateCommand:
    def test_json_output(self, runner, config_path):
        result = runner.invoke(cli, ["--config", config_path, "validate", "--json-output"], obj={})

        assert result.exit_code == 0
        assert json.loads(result.output)["config"]["clusters"]["managed"] == ["east", "west"]

    def test_config_from_environment(self, runner, config_path):
        result = runner.invoke(cli, ["validate", "--json-output"], obj={},
                               env={"DR_RECONCILE_CONFIG": config_path})

        assert result.exit_code == 0
        assert json.loads(result.output)["valid"] is True

    def test_invalid_configuration(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("clusters:\n  hub: a\n  managed: [a]\n")

        result = runner.invoke(cli, ["--config", str(path), "validate"], obj={})

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "absent.yaml"), "validate"], obj={})

        assert result.exit_code == 1
        assert "not found" in result.output


class TestRunCommand:
    def test_overrides_reach_the_job_policy(self, runner, run_job, config_path):
        result = runner.invoke(cli, [
            "--config", config_path, "run", "drpc-sync-disable",
            "--max-attempts", "3", "--interval", "0", "--retry-forever", "--dry-run",
        ], obj={})

        assert result.exit_code == 0
        settings, job = run_job.call_args.args
        kwargs = run_job.call_args.kwargs
        policy = settings.policy_for("drpc-sync-disable")
        assert job == "drpc-sync-disable"
        assert (policy.max_attempts, policy.interval_seconds, policy.retry_forever) == (3, 0, True)
        assert settings.policy_for("ca-precheck").max_attempts == 120
        assert kwargs["dry_run"] is True
        assert kwargs["check_only"] is False

    def test_without_dry_run_flag_configuration_decides(self, runner, run_job, config_path):
        runner.invoke(cli, ["--config", config_path, "run", "ca-distribution"], obj={})

        assert run_job.call_args.kwargs["dry_run"] is None

    def test_failed_run_exits_one(self, runner, run_job, config_path):
        run_job.return_value = 1

        result = runner.invoke(cli, ["--config", config_path, "run", "ca-precheck"], obj={})

        assert result.exit_code == 1

    def test_unknown_job_is_usage_error(self, runner, run_job):
        result = runner.invoke(cli, ["run", "not-a-job"], obj={})

        assert result.exit_code == 2
        run_job.assert_not_called()

    def test_zero_attempts_rejected(self, runner, run_job):
        result = runner.invoke(cli, ["run", "ca-precheck", "--max-attempts", "0"], obj={})

        assert result.exit_code == 2

    def test_reconcile_error_is_reported(self, runner, run_job, config_path):
        run_job.side_effect = AccessDeniedError("managedclusters is forbidden")

        result = runner.invoke(cli, ["--config", config_path, "run", "ca-precheck"], obj={})

        assert result.exit_code == 1
        assert "managedclusters is forbidden" in result.output


class TestCheckCommand:
    def test_single_evaluation_without_remediation(self, runner, run_job, config_path):
        result = runner.invoke(cli, ["--config", config_path, "check", "dr-prerequisites"], obj={})

        assert result.exit_code == 0
        settings, job = run_job.call_args.args
        policy = settings.policy_for("dr-prerequisites")
        assert policy.max_attempts == 1
        assert not policy.retry_forever
        assert run_job.call_args.kwargs["check_only"] is True
