import pytest
from pydantic import ValidationError

from dr_reconciler.config.models import ClusterSettings, ReconcilerConfig, SchedulerPolicy
from dr_reconciler.config.parser import Config, ConfigValidationError
from dr_reconciler.engine.scheduler import RetryScheduler


@pytest.fixture
def config_file(tmp_path):
    def write(text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return str(path)
    return write


class TestConfig:
    def test_defaults_without_file(self):
        settings = Config().load(environ={}).get_settings()

        assert settings.clusters.hub == "local-cluster"
        assert settings.clusters.all_clusters == ["local-cluster", "ocp-primary", "ocp-secondary"]
        assert settings.policy_for("drpc-sync-disable").max_attempts == 60
        assert not settings.dry_run

    def test_yaml_file(self, config_file):
        path = config_file(
            "clusters:\n"
            "  hub: hub-a\n"
            "  managed: [east, west, central]\n"
            "drpc:\n"
            "  name: my-drpc\n"
        )

        settings = Config(path).load(environ={}).get_settings()

        assert settings.clusters.all_clusters == ["hub-a", "east", "west", "central"]
        assert settings.drpc.name == "my-drpc"

    def test_partial_job_policy_inherits_defaults(self, config_file):
        path = config_file("jobs:\n  ca-precheck:\n    interval_seconds: 5\n")

        settings = Config(path).load(environ={}).get_settings()

        policy = settings.policy_for("ca-precheck")
        assert policy.interval_seconds == 5
        assert policy.max_attempts == 120
        assert settings.policy_for("dr-prerequisites").retry_forever

    def test_environment_overrides_file(self, config_file):
        path = config_file("drpc:\n  namespace: from-file\n")
        environ = {
            "DRPC_NAMESPACE": "from-env",
            "PRIMARY_CLUSTER": "east",
            "MIN_CERTIFICATES": "3",
            "DRY_RUN": "true",
            "LOG_LEVEL": "DEBUG",
        }

        settings = Config(path).load(environ=environ).get_settings()

        assert settings.drpc.namespace == "from-env"
        assert settings.clusters.managed == ["east", "ocp-secondary"]
        assert settings.certificates.min_certificates == 3
        assert settings.dry_run
        assert settings.log_level == "debug"

    def test_attempt_overrides_apply_to_every_job(self):
        settings = Config().load(environ={"MAX_ATTEMPTS": "7", "SLEEP_INTERVAL": "0.5"}).get_settings()

        for name in ("dr-prerequisites", "drpc-sync-disable", "submariner-sg-tag"):
            assert settings.policy_for(name).max_attempts == 7
            assert settings.policy_for(name).interval_seconds == 0.5

    def test_non_numeric_override_is_reported(self):
        with pytest.raises(ConfigValidationError) as exc:
            Config().load(environ={"MAX_ATTEMPTS": "lots"})

        assert "env -> MAX_ATTEMPTS" in str(exc.value)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path / "absent.yaml")).load(environ={})

    def test_invalid_yaml(self, config_file):
        with pytest.raises(ConfigValidationError) as exc:
            Config(config_file("clusters: [unclosed\n")).load(environ={})

        assert "Failed to parse YAML" in str(exc.value)

    def test_root_must_be_mapping(self, config_file):
        with pytest.raises(ConfigValidationError):
            Config(config_file("- a\n- b\n")).load(environ={})

    def test_validation_errors_are_listed(self, config_file):
        path = config_file("jobs:\n  ca-precheck:\n    max_attempts: 0\nlog_level: loud\n")

        with pytest.raises(ConfigValidationError) as exc:
            Config(path).load(environ={})

        assert len(exc.value.errors) == 2
        assert "jobs -> ca-precheck -> max_attempts" in str(exc.value)

    def test_jobs_must_be_mapping(self, config_file):
        with pytest.raises(ConfigValidationError) as exc:
            Config(config_file("jobs: [a, b]\n")).load(environ={})

        assert exc.value.errors[0]["loc"] == ["jobs"]

    def test_settings_before_load(self):
        with pytest.raises(ConfigValidationError):
            Config().get_settings()


class TestModels:
    def test_hub_cannot_be_managed(self):
        with pytest.raises(ValidationError):
            ClusterSettings(hub="a", managed=["a", "b"])

    def test_duplicate_managed_clusters(self):
        with pytest.raises(ValidationError):
            ClusterSettings(managed=["a", "a"])

    def test_policy_conversion(self):
        policy = SchedulerPolicy(
            max_attempts=4, interval_seconds=2, retry_forever=True, outer_interval_seconds=9
        )

        assert policy.attempt_policy().max_attempts == 4
        assert policy.attempt_policy().interval == 2
        assert policy.outer_policy().enabled
        assert policy.outer_policy().interval == 9

    def test_backoff_replaces_interval(self):
        policy = SchedulerPolicy.model_validate(
            {"max_attempts": 5, "backoff": {"base_delay": 1, "multiplier": 2, "max_delay": 3}}
        )

        scheduler = RetryScheduler.from_policy(policy.attempt_policy())

        assert [scheduler.delay_for(n) for n in (1, 2, 3, 4)] == [1, 2, 3, 3]

    def test_unknown_job_gets_default_policy(self):
        assert ReconcilerConfig().policy_for("something-else").max_attempts == 60
