"""Job definitions: which checks, targets and policies each job runs."""

from typing import Callable, Dict, List

from dr_reconciler.config.models import ReconcilerConfig
from dr_reconciler.engine.driver import JobDefinition
from dr_reconciler.jobs.certificates import (
    ca_configured_check,
    ca_consistency_check,
    cleanup_and_distribute,
    distribute_ca_bundle,
    hub_bundle_check,
    ramen_profiles_check,
)
from dr_reconciler.jobs.drpc import disable_argo_sync, drpc_checks
from dr_reconciler.jobs.managed import managed_cluster_ready_check
from dr_reconciler.jobs.storage import noobaa_health_check, odf_health_check
from dr_reconciler.jobs.submariner import security_group_tag_check

JobBuilder = Callable[[ReconcilerConfig], JobDefinition]


def _definition(config: ReconcilerConfig, name: str, description: str, checks, targets: List[str],
                **kwargs) -> JobDefinition:
    policy = config.policy_for(name)
    return JobDefinition(
        name=name,
        description=description,
        checks=checks,
        targets=targets,
        policy=policy.attempt_policy(),
        outer_policy=policy.outer_policy(),
        **kwargs,
    )


def dr_prerequisites(config: ReconcilerConfig) -> JobDefinition:
    clusters = config.clusters
    checks = [odf_health_check(c) for c in clusters.managed]
    checks += [noobaa_health_check(c) for c in clusters.all_clusters]
    checks += [ca_configured_check(c) for c in clusters.all_clusters]
    checks.append(ca_consistency_check(config))
    return _definition(
        config, "dr-prerequisites",
        "ODF, object storage and CA bundle readiness on every cluster",
        checks, clusters.all_clusters,
        failure_hints=[
            "Check that ODF is installed and the StorageCluster is Ready on managed clusters",
            "Check NooBaa status in openshift-storage",
            "Run the ca-distribution job if CA bundles are missing or differ",
        ],
    )


def drpc_sync_disable(config: ReconcilerConfig) -> JobDefinition:
    hub = config.clusters.hub
    return _definition(
        config, "drpc-sync-disable",
        "Wait for a healthy DRPC, then disable Argo CD automated sync",
        drpc_checks(hub), [hub],
        terminal_action=disable_argo_sync,
        failure_hints=[
            f"oc get drplacementcontrol {config.drpc.name} -n {config.drpc.namespace} -o yaml",
            f"Check the VMs in {config.drpc.protected_namespace} and the Ramen operator logs",
        ],
    )


def submariner_sg_tag(config: ReconcilerConfig) -> JobDefinition:
    clusters = config.clusters
    return _definition(
        config, "submariner-sg-tag",
        "Tag Submariner gateway security groups as owned by their cluster",
        [security_group_tag_check(c) for c in clusters.managed],
        [clusters.hub] + list(clusters.managed),
        failure_hints=[
            "Check the <cluster>-cluster-aws-creds secrets on the hub",
            "Check that the Submariner gateway has been deployed",
        ],
    )


def ca_precheck(config: ReconcilerConfig) -> JobDefinition:
    clusters = config.clusters
    checks = [managed_cluster_ready_check(clusters.hub, c) for c in clusters.managed]
    checks.append(hub_bundle_check(config, remediate=cleanup_and_distribute))
    return _definition(
        config, "ca-precheck",
        "Managed clusters joined and hub CA bundle complete",
        checks, clusters.all_clusters,
        failure_hints=[
            "oc get managedclusters",
            f"oc get configmap {config.certificates.configmap_name} "
            f"-n {config.certificates.configmap_namespace} -o yaml",
        ],
    )


def ca_distribution(config: ReconcilerConfig) -> JobDefinition:
    clusters = config.clusters
    checks = [ca_configured_check(c, remediate=distribute_ca_bundle) for c in clusters.all_clusters]
    checks.append(ca_consistency_check(config, remediate=distribute_ca_bundle))
    checks.append(ramen_profiles_check(config, remediate=distribute_ca_bundle))
    return _definition(
        config, "ca-distribution",
        "Combined CA bundle distributed to every cluster and the Ramen S3 profiles",
        checks, clusters.all_clusters,
        failure_hints=[
            f"Check {config.certificates.ramen_configmap} in {config.certificates.ramen_namespace} "
            f"has at least {config.certificates.min_s3_profiles} s3StoreProfiles",
            "Check that every managed cluster kubeconfig secret exists on the hub",
        ],
    )


JOBS: Dict[str, JobBuilder] = {
    "dr-prerequisites": dr_prerequisites,
    "drpc-sync-disable": drpc_sync_disable,
    "submariner-sg-tag": submariner_sg_tag,
    "ca-precheck": ca_precheck,
    "ca-distribution": ca_distribution,
}


def build_job(name: str, config: ReconcilerConfig) -> JobDefinition:
    """Build a job definition by name.

    Raises:
        KeyError: Unknown job
    """
    if name not in JOBS:
        raise KeyError(f"Unknown job '{name}'. Available: {', '.join(JOBS)}")
    return JOBS[name](config)


__all__ = [
    "JOBS",
    "JobBuilder",
    "build_job",
    "dr_prerequisites",
    "drpc_sync_disable",
    "submariner_sg_tag",
    "ca_precheck",
    "ca_distribution",
]
