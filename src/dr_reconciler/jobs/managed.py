"""Managed cluster registration checks on the hub."""

from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.models import CheckResult

REQUIRED_CONDITIONS = ("ManagedClusterConditionAvailable", "ManagedClusterJoined")


def managed_cluster_ready_check(hub: str, cluster: str) -> Check:
    """ManagedCluster is Available and Joined, as seen from the hub."""
    name = f"managed-cluster-{cluster}"

    def evaluate(context: CheckContext) -> CheckResult:
        managed = context.cluster(hub).require("managedcluster", None, cluster)
        statuses = {}
        for condition_type in REQUIRED_CONDITIONS:
            condition = managed.condition(condition_type)
            statuses[condition_type] = condition.status if condition else "Unknown"

        not_ready = [f"{t}={s}" for t, s in statuses.items() if s != "True"]
        if not_ready:
            return CheckResult.fail(name, f"{cluster} not ready: {', '.join(not_ready)}",
                                    target=cluster, data=statuses)
        return CheckResult.ok(name, f"{cluster} available and joined", target=cluster, data=statuses)

    return Check(name=name, evaluate=evaluate, targets=(hub,), description=f"{cluster} registered and joined")
