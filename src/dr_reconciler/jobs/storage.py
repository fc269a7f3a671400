"""ODF and NooBaa object storage health checks."""

from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.models import CheckResult

STORAGECLUSTER_CRD = "storageclusters.ocs.openshift.io"
NOOBAA_CRD = "noobaas.noobaa.io"
CRITICAL_CONDITION_TYPES = ("Available", "Ready")


def running_pods(context: CheckContext, cluster: str, namespace: str, selector: str) -> int:
    pods = context.cluster(cluster).list("pods", namespace, label_selector=selector)
    return sum(1 for pod in pods if pod.field("status.phase") == "Running")


def odf_health_check(cluster: str) -> Check:
    """StorageCluster installed and Ready, ODF operator running."""
    name = f"odf-health-{cluster}"

    def evaluate(context: CheckContext) -> CheckResult:
        settings = context.config.storage
        client = context.cluster(cluster)

        if not client.api_resource_exists(STORAGECLUSTER_CRD):
            return CheckResult.fail(name, f"ODF not installed: CRD {STORAGECLUSTER_CRD} missing", target=cluster)

        storage_clusters = client.list("storagecluster", settings.odf_namespace)
        if not storage_clusters:
            return CheckResult.indeterminate(
                name, f"No StorageCluster in {settings.odf_namespace}", target=cluster
            )
        phase = storage_clusters[0].field("status.phase", "Unknown")
        if phase != "Ready":
            return CheckResult.fail(
                name, f"StorageCluster {storage_clusters[0].name} phase is {phase}, expected Ready",
                target=cluster, data={'phase': phase},
            )

        running = running_pods(context, cluster, settings.odf_namespace, settings.odf_operator_selector)
        if running == 0:
            return CheckResult.fail(name, "No running ODF operator pods", target=cluster, data={'phase': phase})

        return CheckResult.ok(name, f"StorageCluster Ready, {running} operator pod(s) running",
                              target=cluster, data={'phase': phase, 'operator_pods': running})

    return Check(name=name, evaluate=evaluate, targets=(cluster,), description=f"ODF health on {cluster}")


def noobaa_health_check(cluster: str) -> Check:
    """NooBaa system Ready with no failing Available/Ready conditions.

    Conditions are optional once the phase is Ready; a NooBaa that reports
    Ready without conditions passes.
    """
    name = f"object-storage-{cluster}"

    def evaluate(context: CheckContext) -> CheckResult:
        settings = context.config.storage
        client = context.cluster(cluster)

        if not client.api_resource_exists(NOOBAA_CRD):
            return CheckResult.fail(name, f"NooBaa not installed: CRD {NOOBAA_CRD} missing", target=cluster)

        systems = client.list("noobaa", settings.noobaa_namespace)
        if not systems:
            return CheckResult.indeterminate(
                name, f"No NooBaa system in {settings.noobaa_namespace}", target=cluster
            )
        noobaa = systems[0]
        phase = noobaa.field("status.phase", "Unknown")
        ready = noobaa.field("status.ready") is True
        if phase != "Ready" and not ready:
            return CheckResult.fail(
                name, f"NooBaa {noobaa.name} phase is {phase}, expected Ready",
                target=cluster, data={'phase': phase},
            )

        unhealthy = [
            f"{cond.type}={cond.status}"
            for cond in noobaa.conditions()
            if cond.status in ("False", "Unknown")
            and any(t in cond.type for t in CRITICAL_CONDITION_TYPES)
        ]
        if unhealthy:
            return CheckResult.fail(
                name, f"NooBaa {noobaa.name} conditions unhealthy: {', '.join(unhealthy)}",
                target=cluster, data={'phase': phase, 'conditions': unhealthy},
            )

        return CheckResult.ok(name, f"NooBaa {noobaa.name} {phase}", target=cluster, data={'phase': phase})

    return Check(name=name, evaluate=evaluate, targets=(cluster,),
                 description=f"Object storage (NooBaa) health on {cluster}")
