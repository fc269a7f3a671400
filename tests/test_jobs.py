import json
from unittest.mock import MagicMock

import pytest

from dr_reconciler.clients.cluster import ClusterClient
from dr_reconciler.engine.checks import CheckRegistry
from dr_reconciler.engine.models import CheckOutcome, RemediationOutcome
from dr_reconciler.jobs import JOBS, build_job
from dr_reconciler.jobs.drpc import disable_argo_sync, drpc_checks
from dr_reconciler.jobs.managed import managed_cluster_ready_check
from dr_reconciler.jobs.storage import noobaa_health_check, odf_health_check
from dr_reconciler.jobs.submariner import security_group_tag_check

HUB = "local-cluster"
DRPC_GET = ("get", "drplacementcontrol", "gitops-vm-protection")
APP_GET = ("get", "applications.argoproj.io", "regional-dr")


@pytest.fixture
def context(fake_oc, make_context):
    """Context where every cluster is served by the same scripted oc."""
    def build(**kwargs):
        clients = {name: ClusterClient(name, runner=fake_oc) for name in (HUB, "ocp-primary", "ocp-secondary")}
        return make_context(clients, **kwargs)
    return build


def drpc(phase=None, conditions=None):
    status = {}
    if phase:
        status["phase"] = phase
    if conditions:
        status["conditions"] = [{"type": t, "status": s} for t, s in conditions]
    return {"kind": "DRPlacementControl", "metadata": {"name": "gitops-vm-protection"}, "status": status}


def evaluate(check, context):
    return CheckRegistry([check]).evaluate(check, context)


def by_name(checks):
    return {c.name: c for c in checks}


class TestDRPCChecks:
    def test_missing_drpc(self, context):
        results = CheckRegistry(drpc_checks(HUB)).evaluate_all(context())

        outcomes = {r.check: r.outcome for r in results}
        assert outcomes["drpc-exists"] == CheckOutcome.FAIL
        assert outcomes["drpc-status"] == CheckOutcome.INDETERMINATE
        assert "gitops-vm-protection" in results[1].message

    def test_deployed_passes_everything(self, fake_oc, context):
        fake_oc.on(*DRPC_GET, response=drpc("Deployed"))

        results = CheckRegistry(drpc_checks(HUB)).evaluate_all(context())

        assert all(r.passed for r in results)

    def test_no_conditions_is_indeterminate(self, fake_oc, context):
        fake_oc.on(*DRPC_GET, response=drpc("Initiating"))

        result = evaluate(by_name(drpc_checks(HUB))["drpc-status"], context())

        assert result.outcome == CheckOutcome.INDETERMINATE

    def test_available_condition_passes(self, fake_oc, context):
        fake_oc.on(*DRPC_GET, response=drpc("Relocating", [("Available", "True"), ("PeerReady", "False")]))

        assert evaluate(by_name(drpc_checks(HUB))["drpc-status"], context()).passed

    def test_false_condition_fails(self, fake_oc, context):
        fake_oc.on(*DRPC_GET, response=drpc("Relocating", [("PeerReady", "False"), ("Protected", "Unknown")]))

        result = evaluate(by_name(drpc_checks(HUB))["drpc-status"], context())

        assert result.outcome == CheckOutcome.FAIL
        assert "PeerReady=False" in result.message

    def test_ambiguous_conditions_pass(self, fake_oc, context):
        fake_oc.on(*DRPC_GET, response=drpc("Relocating", [("Protected", "Unknown")]))

        assert evaluate(by_name(drpc_checks(HUB))["drpc-status"], context()).passed

    @pytest.mark.parametrize("conditions,outcome", [
        ([("PVCReplication", "False")], CheckOutcome.FAIL),
        ([("VolumeReplicationReady", "True")], CheckOutcome.PASS),
        ([("Available", "True")], CheckOutcome.INDETERMINATE),
    ])
    def test_pvc_replication(self, fake_oc, context, conditions, outcome):
        fake_oc.on(*DRPC_GET, response=drpc("Relocating", conditions))

        result = evaluate(by_name(drpc_checks(HUB))["drpc-pvc-replication"], context())

        assert result.outcome == outcome

    def test_object_replication(self, fake_oc, context):
        fake_oc.on(*DRPC_GET, response=drpc("Relocating", [("KubeObjectsReplicated", "Replicating")]))

        assert evaluate(by_name(drpc_checks(HUB))["drpc-object-replication"], context()).passed


class TestArgoSync:
    def app(self, automated=True):
        sync = {"automated": {"prune": True, "selfHeal": True}} if automated else {}
        return {"kind": "Application", "metadata": {"name": "regional-dr"}, "spec": {"syncPolicy": sync}}

    def test_json_patch_removes_automated(self, fake_oc, context):
        fake_oc.on(*APP_GET, response=self.app())
        fake_oc.on("patch", response=self.app(automated=False))

        result = disable_argo_sync(context())

        assert result.outcome == RemediationOutcome.APPLIED
        patch = fake_oc.commands()[-1]
        assert "--type=json" in patch
        assert json.loads(patch[patch.index("-p") + 1]) == [{"op": "remove", "path": "/spec/syncPolicy/automated"}]

    def test_falls_back_to_merge_patch(self, fake_oc, context):
        fake_oc.on(*APP_GET, response=self.app())
        fake_oc.on("patch", response=self.app(automated=False))
        fake_oc.fail("patch", "applications.argoproj.io", "regional-dr", "-n", "ramendr-starter-kit-hub",
                     "--type=json", stderr='The Application "regional-dr" is invalid: json patch rejected')

        result = disable_argo_sync(context())

        assert result.outcome == RemediationOutcome.APPLIED
        merge = fake_oc.commands()[-1]
        assert "--type=merge" in merge
        assert json.loads(merge[merge.index("-p") + 1]) == {"spec": {"syncPolicy": {"automated": None}}}

    def test_already_disabled(self, fake_oc, context):
        fake_oc.on(*APP_GET, response=self.app(automated=False))

        result = disable_argo_sync(context())

        assert result.outcome == RemediationOutcome.NOT_APPLICABLE
        assert not any(c[0] == "patch" for c in fake_oc.commands())


class TestStorageChecks:
    def crd(self, fake_oc, name):
        fake_oc.on("get", "customresourcedefinition", name, response={"metadata": {"name": name}})

    def test_odf_not_installed(self, context):
        result = evaluate(odf_health_check("ocp-primary"), context())

        assert result.outcome == CheckOutcome.FAIL
        assert "ODF not installed" in result.message

    def test_odf_without_storagecluster_is_indeterminate(self, fake_oc, context):
        self.crd(fake_oc, "storageclusters.ocs.openshift.io")
        fake_oc.on("get", "storagecluster", response={"items": []})

        assert evaluate(odf_health_check("ocp-primary"), context()).outcome == CheckOutcome.INDETERMINATE

    def test_odf_ready(self, fake_oc, context):
        self.crd(fake_oc, "storageclusters.ocs.openshift.io")
        fake_oc.on("get", "storagecluster", response={"items": [
            {"metadata": {"name": "ocs-storagecluster"}, "status": {"phase": "Ready"}},
        ]})
        fake_oc.on("get", "pods", response={"items": [
            {"metadata": {"name": "odf-operator"}, "status": {"phase": "Running"}},
        ]})

        result = evaluate(odf_health_check("ocp-primary"), context())

        assert result.passed
        assert result.data["operator_pods"] == 1

    def test_odf_progressing(self, fake_oc, context):
        self.crd(fake_oc, "storageclusters.ocs.openshift.io")
        fake_oc.on("get", "storagecluster", response={"items": [
            {"metadata": {"name": "ocs-storagecluster"}, "status": {"phase": "Progressing"}},
        ]})

        result = evaluate(odf_health_check("ocp-primary"), context())

        assert not result.passed
        assert "Progressing" in result.message

    def test_noobaa_ready_without_conditions(self, fake_oc, context):
        self.crd(fake_oc, "noobaas.noobaa.io")
        fake_oc.on("get", "noobaa", response={"items": [{"metadata": {"name": "noobaa"}, "status": {"phase": "Ready"}}]})

        assert evaluate(noobaa_health_check(HUB), context()).passed

    def test_noobaa_unavailable_condition(self, fake_oc, context):
        self.crd(fake_oc, "noobaas.noobaa.io")
        fake_oc.on("get", "noobaa", response={"items": [{
            "metadata": {"name": "noobaa"},
            "status": {"phase": "Ready", "conditions": [{"type": "Available", "status": "False"}]},
        }]})

        result = evaluate(noobaa_health_check(HUB), context())

        assert not result.passed
        assert "Available=False" in result.message


class TestManagedClusterCheck:
    def test_joined_and_available(self, fake_oc, context):
        fake_oc.on("get", "managedcluster", "ocp-primary", response={"status": {"conditions": [
            {"type": "ManagedClusterConditionAvailable", "status": "True"},
            {"type": "ManagedClusterJoined", "status": "True"},
        ]}})

        assert evaluate(managed_cluster_ready_check(HUB, "ocp-primary"), context()).passed

    def test_not_joined(self, fake_oc, context):
        fake_oc.on("get", "managedcluster", "ocp-primary", response={"status": {"conditions": [
            {"type": "ManagedClusterConditionAvailable", "status": "True"},
        ]}})

        result = evaluate(managed_cluster_ready_check(HUB, "ocp-primary"), context())

        assert not result.passed
        assert "ManagedClusterJoined=Unknown" in result.message


class TestSubmarinerCheck:
    INFRA = {"status": {"infrastructureName": "ocp-primary-x7k2p",
                        "platformStatus": {"aws": {"region": "us-east-2", "vpc": "vpc-1"}}}}

    def test_untagged_group_fails_then_remediates(self, fake_oc, context):
        fake_oc.on("get", "infrastructure", "cluster", response=self.INFRA)
        tagger = MagicMock()
        tagger.find_first.side_effect = [None, "sg-gw"] * 2
        tagger.get_tag.return_value = None
        tagger.ensure_tag.return_value = True
        check = security_group_tag_check("ocp-primary")
        ctx = context(aws=lambda cluster: tagger)

        result = evaluate(check, ctx)
        remediation = check.remediate(ctx)

        assert result.outcome == CheckOutcome.FAIL
        assert result.data["group_id"] == "sg-gw"
        tagger.ensure_tag.assert_called_once_with("sg-gw", "kubernetes.io/cluster/ocp-primary-x7k2p", "owned")
        assert remediation.outcome == RemediationOutcome.APPLIED

    def test_tagged_group_passes(self, fake_oc, context):
        fake_oc.on("get", "infrastructure", "cluster", response=self.INFRA)
        tagger = MagicMock()
        tagger.find_first.return_value = "sg-gw"
        tagger.get_tag.return_value = "owned"

        assert evaluate(security_group_tag_check("ocp-primary"), context(aws=lambda cluster: tagger)).passed

    def test_no_gateway_group(self, fake_oc, context):
        fake_oc.on("get", "infrastructure", "cluster", response=self.INFRA)
        tagger = MagicMock()
        tagger.find_first.return_value = None

        result = evaluate(security_group_tag_check("ocp-primary"), context(aws=lambda cluster: tagger))

        assert not result.passed
        assert "No Submariner gateway security group" in result.message
        assert tagger.find_first.call_count == 4

    def test_without_cloud_credentials_is_terminal(self, fake_oc, context):
        fake_oc.on("get", "infrastructure", "cluster", response=self.INFRA)

        result = evaluate(security_group_tag_check("ocp-primary"), context())

        assert result.terminal


class TestJobDefinitions:
    @pytest.mark.parametrize("name", sorted(JOBS))
    def test_every_job_builds(self, config, name):
        definition = build_job(name, config)

        assert definition.name == name
        assert definition.checks
        assert definition.failure_hints
        assert len({c.name for c in definition.checks}) == len(definition.checks)

    def test_unknown_job(self, config):
        with pytest.raises(KeyError):
            build_job("nope", config)

    def test_drpc_job_has_terminal_action(self, config):
        definition = build_job("drpc-sync-disable", config)

        assert definition.terminal_action is disable_argo_sync
        assert definition.targets == [HUB]
        assert definition.policy.max_attempts == 60

    def test_prerequisites_retry_forever(self, config):
        definition = build_job("dr-prerequisites", config)

        assert definition.outer_policy.enabled
        assert definition.targets == [HUB, "ocp-primary", "ocp-secondary"]

    def test_distribution_checks_share_remediation(self, config):
        definition = build_job("ca-distribution", config)

        assert {id(c.remediate) for c in definition.checks} == {id(definition.checks[0].remediate)}

    def test_checks_follow_configured_clusters(self, config):
        config.clusters.managed = ["east", "west", "central"]

        definition = build_job("submariner-sg-tag", config)

        assert [c.name for c in definition.checks] == ["submariner-sg-east", "submariner-sg-west", "submariner-sg-central"]