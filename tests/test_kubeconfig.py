import base64
import os
import stat

import pytest
import yaml

from conftest import completed
from dr_reconciler.clients.resources import Resource
from dr_reconciler.config.models import ClusterSettings, ReconcilerConfig, SchedulerPolicy
from dr_reconciler.engine.models import Reachability, SchedulerState
from dr_reconciler.runner import build_driver, with_discovered_clusters
from dr_reconciler.targets.kubeconfig import KubeconfigResolver, kubeconfig_from_secret

KUBECONFIG = "apiVersion: v1\nkind: Config\nclusters: []\n"


def encoded(text):
    return base64.b64encode(text.encode()).decode()


@pytest.fixture
def settings(tmp_path):
    return ClusterSettings(
        kubeconfig_dir=str(tmp_path / "kubeconfigs"),
        service_account_dir=str(tmp_path / "serviceaccount"),
    )


@pytest.fixture
def reachable(fake_oc):
    fake_oc.on("get", "nodes", response="node/master-0\n")
    return fake_oc


@pytest.fixture
def resolver(settings, reachable, no_sleep):
    return KubeconfigResolver(settings, runner=reachable, sleep=no_sleep)


class TestKubeconfigFromSecret:
    def test_prefers_kubeconfig_key(self):
        secret = Resource.from_dict({"data": {"kubeconfig": encoded("a"), "raw-kubeconfig": encoded("b")}})

        assert kubeconfig_from_secret(secret) == "a"

    def test_falls_back_to_raw_key(self):
        secret = Resource.from_dict({"data": {"kubeconfig": encoded("  "), "raw-kubeconfig": encoded("b")}})

        assert kubeconfig_from_secret(secret) == "b"

    def test_missing(self):
        assert kubeconfig_from_secret(None) is None
        assert kubeconfig_from_secret(Resource.from_dict({"data": {}})) is None


class TestHubResolution:
    def test_ambient_context_outside_a_pod(self, resolver):
        hub = resolver.resolve(["local-cluster"])["local-cluster"]

        assert hub.is_hub
        assert hub.resolved
        assert hub.kubeconfig is None

    def test_service_account_kubeconfig_in_a_pod(self, settings, reachable, no_sleep, tmp_path):
        sa_dir = tmp_path / "serviceaccount"
        sa_dir.mkdir()
        (sa_dir / "token").write_text("token")
        (sa_dir / "ca.crt").write_text("ca")

        hub = KubeconfigResolver(settings, runner=reachable, sleep=no_sleep).hub_target()

        document = yaml.safe_load(open(hub.kubeconfig).read())
        assert document["clusters"][0]["cluster"]["server"] == "https://kubernetes.default.svc"
        assert document["clusters"][0]["cluster"]["certificate-authority"] == str(sa_dir / "ca.crt")
        assert document["users"][0]["user"]["tokenFile"] == str(sa_dir / "token")
        assert stat.S_IMODE(os.stat(hub.kubeconfig).st_mode) == 0o600

    def test_hub_is_resolved_once(self, resolver, reachable):
        resolver.resolve(["local-cluster"])
        resolver.resolve(["local-cluster"])

        assert reachable.commands().count(["get", "nodes", "-o", "name"]) == 1


class TestManagedResolution:
    def test_admin_kubeconfig_secret(self, resolver, reachable, settings):
        reachable.on("get", "secret", "ocp-primary-admin-kubeconfig",
                     response={"kind": "Secret", "data": {"kubeconfig": encoded(KUBECONFIG)}})

        target = resolver.resolve(["ocp-primary"])["ocp-primary"]

        assert target.resolved
        assert not target.is_hub
        assert target.kubeconfig == os.path.join(settings.kubeconfig_dir, "ocp-primary-kubeconfig.yaml")
        assert open(target.kubeconfig).read() == KUBECONFIG
        assert stat.S_IMODE(os.stat(target.kubeconfig).st_mode) == 0o600

    def test_any_kubeconfig_named_secret(self, resolver, reachable):
        reachable.on("get", "secret", "-n", "ocp-secondary", response={"items": [
            {"metadata": {"name": "builder-token"}, "data": {"token": encoded("x")}},
            {"metadata": {"name": "ocp-secondary-import-kubeconfig"}, "data": {"raw-kubeconfig": encoded(KUBECONFIG)}},
        ]})

        target = resolver.resolve(["ocp-secondary"])["ocp-secondary"]

        assert target.resolved
        assert open(target.kubeconfig).read() == KUBECONFIG

    def test_missing_secret_is_retried_then_recorded(self, resolver, no_sleep):
        target = resolver.resolve(["ocp-primary"])["ocp-primary"]

        assert not target.resolved
        assert target.reachability == Reachability.UNKNOWN
        assert "No kubeconfig secret found for ocp-primary" in target.error
        assert [c.args[0] for c in no_sleep.call_args_list] == [5, 10, 20]

    def test_forbidden_secret_read_is_not_retried(self, resolver, reachable, no_sleep):
        reachable.fail("get", "secret", stderr='Error from server (Forbidden): secrets is forbidden')

        target = resolver.resolve(["ocp-primary"])["ocp-primary"]

        assert "forbidden" in target.error
        assert target.error_terminal
        assert target.error_hint
        no_sleep.assert_not_called()

    def test_unreachable_api_server(self, settings, no_sleep):
        def runner(args, input_text, timeout):
            if "get" in args and "nodes" in args and any("ocp-primary" in a for a in args):
                return completed(stderr="dial tcp 10.0.0.1:6443: i/o timeout", returncode=1)
            if "ocp-primary-admin-kubeconfig" in args:
                return completed(stdout='{"data": {"kubeconfig": "%s"}}' % encoded(KUBECONFIG))
            return completed(stdout="node/master-0\n")

        target = KubeconfigResolver(settings, runner=runner, sleep=no_sleep).resolve(["ocp-primary"])["ocp-primary"]

        assert target.reachability == Reachability.UNREACHABLE
        assert "not reachable" in target.error

    def test_refresh_picks_up_new_secret(self, resolver, reachable):
        target = resolver.resolve(["ocp-primary"])["ocp-primary"]
        reachable.on("get", "secret", "ocp-primary-admin-kubeconfig",
                     response={"data": {"kubeconfig": encoded(KUBECONFIG)}})

        assert resolver.refresh(target).resolved


class TestDiscovery:
    def test_excludes_local_cluster(self, resolver, reachable):
        reachable.on("get", "managedclusters", response={"items": [
            {"metadata": {"name": "local-cluster"}},
            {"metadata": {"name": "east"}},
            {"metadata": {"name": "west"}},
        ]})

        assert resolver.discover_managed_clusters() == ["east", "west"]

    def test_configuration_follows_discovery(self, resolver, reachable):
        reachable.on("get", "managedclusters", response={"items": [{"metadata": {"name": "east"}}]})

        configuration = with_discovered_clusters(ReconcilerConfig(), resolver)

        assert configuration.clusters.managed == ["east"]

    def test_failed_discovery_keeps_configuration(self, resolver, reachable):
        reachable.fail("get", "managedclusters", stderr="Error from server (Forbidden): managedclusters is forbidden")

        assert with_discovered_clusters(ReconcilerConfig(), resolver).clusters.managed == \
            ["ocp-primary", "ocp-secondary"]


class TestBuildDriver:
    def test_drpc_job_end_to_end(self, settings, reachable, no_sleep):
        reachable.on("get", "drplacementcontrol", response={"status": {"phase": "Deployed"}})
        reachable.on("get", "applications.argoproj.io", response={
            "metadata": {"name": "regional-dr"}, "spec": {"syncPolicy": {"automated": {}}},
        })
        reachable.on("patch", response={"metadata": {"name": "regional-dr"}})
        configuration = ReconcilerConfig(clusters=settings)

        exit_code = build_driver(configuration, "drpc-sync-disable", runner=reachable, sleep=no_sleep).run()

        assert exit_code == 0
        assert any(c[0] == "patch" for c in reachable.commands())
        no_sleep.assert_not_called()

    def test_dry_run_from_configuration(self, settings, reachable, no_sleep):
        configuration = ReconcilerConfig(clusters=settings, dry_run=True)

        driver = build_driver(configuration, "drpc-sync-disable", runner=reachable, sleep=no_sleep)

        assert driver.dry_run

    def test_unknown_job(self, settings):
        with pytest.raises(KeyError):
            build_driver(ReconcilerConfig(clusters=settings), "nope")

    def test_forbidden_credential_read_aborts_the_run(self, settings, reachable, no_sleep):
        reachable.fail("get", "secret", stderr='Error from server (Forbidden): secrets is forbidden: '
                                               'User "system:serviceaccount:dr:reconciler" cannot get resource')
        configuration = ReconcilerConfig(clusters=settings, jobs={
            "dr-prerequisites": SchedulerPolicy(max_attempts=4, interval_seconds=0, retry_forever=False),
        })
        driver = build_driver(configuration, "dr-prerequisites", runner=reachable, sleep=no_sleep)

        exit_code = driver.run()

        assert exit_code == 1
        assert driver.run_record.state == SchedulerState.ABORTED
        assert len(driver.run_record.attempts) == 1
        no_sleep.assert_not_called()
