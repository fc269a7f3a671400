"""DR placement control health and Argo CD sync disabling."""

from typing import Sequence

from dr_reconciler.clients.resources import Resource
from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.models import CheckResult, RemediationOutcome, RemediationResult
from dr_reconciler.utils.errors import CommandError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

DRPC_KIND = "drplacementcontrol"
ARGO_APPLICATION_KIND = "applications.argoproj.io"
DEPLOYED_PHASE = "Deployed"
HEALTHY_STATUSES = ("True", "Healthy", "Replicating")
UNHEALTHY_STATUSES = ("False", "Unhealthy", "Failed")
PVC_CONDITION_HINTS = ("PVC", "Volume", "Storage")
OBJECT_CONDITION_HINTS = ("KubeObject", "Object", "Replication", "Available")


def get_drpc(context: CheckContext) -> Resource:
    settings = context.config.drpc
    return context.cluster(context.config.clusters.hub).require(DRPC_KIND, settings.namespace, settings.name)


def replication_health(name: str, drpc: Resource, hints: Sequence[str]) -> CheckResult:
    """Health of the replication aspect identified by condition type `hints`.

    Deployed phase passes outright. Otherwise a relevant unhealthy condition
    fails, a relevant healthy one passes and no relevant condition at all is
    indeterminate.
    """
    phase = drpc.field("status.phase", "Unknown")
    if phase == DEPLOYED_PHASE:
        return CheckResult.ok(name, f"DRPC phase {phase}", data={'phase': phase})

    relevant = [c for c in drpc.conditions() if any(h in c.type for h in hints)]
    failing = [f"{c.type}={c.status}" for c in relevant if c.status in UNHEALTHY_STATUSES]
    if failing:
        return CheckResult.fail(name, f"Unhealthy conditions: {', '.join(failing)}",
                                data={'phase': phase, 'conditions': failing})
    healthy = [f"{c.type}={c.status}" for c in relevant if c.status in HEALTHY_STATUSES]
    if healthy:
        return CheckResult.ok(name, f"Healthy conditions: {', '.join(healthy)}", data={'phase': phase})
    return CheckResult.indeterminate(
        name, f"Phase {phase} and no {'/'.join(hints)} condition reported", data={'phase': phase}
    )


def drpc_checks(hub: str):
    """The four DRPC gates: exists, status, PVC and object replication."""

    def exists(context: CheckContext) -> CheckResult:
        settings = context.config.drpc
        drpc = context.cluster(hub).get(DRPC_KIND, settings.namespace, settings.name)
        if drpc is None:
            return CheckResult.fail("drpc-exists", f"DRPC {settings.namespace}/{settings.name} not found")
        return CheckResult.ok("drpc-exists", f"DRPC {settings.namespace}/{settings.name} found")

    def status(context: CheckContext) -> CheckResult:
        drpc = get_drpc(context)
        phase = drpc.field("status.phase", "Unknown")
        conditions = drpc.conditions()
        if phase == DEPLOYED_PHASE:
            return CheckResult.ok("drpc-status", f"Phase {phase}", data={'phase': phase})
        if not conditions:
            return CheckResult.indeterminate("drpc-status", f"Phase {phase}, no status conditions reported",
                                             data={'phase': phase})
        for condition_type in ("Available", "Ready"):
            condition = drpc.condition(condition_type)
            if condition and condition.is_true:
                return CheckResult.ok("drpc-status", f"{condition_type}=True", data={'phase': phase})
        failing = [f"{c.type}={c.status}" for c in conditions if c.is_false]
        if failing:
            return CheckResult.fail("drpc-status", f"Phase {phase}, failing conditions: {', '.join(failing)}",
                                    data={'phase': phase, 'conditions': failing})
        return CheckResult.ok("drpc-status", f"Phase {phase}, no failing conditions", data={'phase': phase})

    def pvcs(context: CheckContext) -> CheckResult:
        return replication_health("drpc-pvc-replication", get_drpc(context), PVC_CONDITION_HINTS)

    def objects(context: CheckContext) -> CheckResult:
        return replication_health("drpc-object-replication", get_drpc(context), OBJECT_CONDITION_HINTS)

    return [
        Check("drpc-exists", exists, targets=(hub,), description="DRPC resource exists"),
        Check("drpc-status", status, targets=(hub,), description="DRPC deployed or available"),
        Check("drpc-pvc-replication", pvcs, targets=(hub,), description="PVC replication healthy"),
        Check("drpc-object-replication", objects, targets=(hub,), description="Kubernetes object replication healthy"),
    ]


def disable_argo_sync(context: CheckContext) -> RemediationResult:
    """Remove `spec.syncPolicy.automated` from the Argo CD application.

    A JSON patch removal is tried first with a merge patch setting the field
    to null as fallback. Already-disabled sync is left untouched.
    """
    settings = context.config.argo
    client = context.cluster(context.config.clusters.hub)
    app = client.require(ARGO_APPLICATION_KIND, settings.app_namespace, settings.app_name)
    ref = f"{settings.app_namespace}/{settings.app_name}"

    if app.field("spec.syncPolicy.automated") is None:
        logger.info(f"Automated sync already disabled on {ref}")
        return RemediationResult(check="argo-sync", outcome=RemediationOutcome.NOT_APPLICABLE,
                                 message="Automated sync already disabled")

    try:
        client.patch(ARGO_APPLICATION_KIND, settings.app_namespace, settings.app_name,
                     [{"op": "remove", "path": "/spec/syncPolicy/automated"}], strategy="json")
    except CommandError as e:
        logger.warning(f"JSON patch on {ref} failed ({e.message}), retrying with merge patch")
        client.patch(ARGO_APPLICATION_KIND, settings.app_namespace, settings.app_name,
                     {"spec": {"syncPolicy": {"automated": None}}}, strategy="merge")

    logger.info(f"Disabled automated sync on {ref}")
    return RemediationResult(check="argo-sync", outcome=RemediationOutcome.APPLIED,
                             message=f"Disabled automated sync on {ref}")
