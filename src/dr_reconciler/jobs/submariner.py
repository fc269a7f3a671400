"""Submariner gateway security group ownership tagging."""

from typing import Optional, Tuple

from dr_reconciler.clients.aws import SecurityGroupTagger
from dr_reconciler.clients.resources import Resource
from dr_reconciler.config.models import SubmarinerSettings
from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.models import CheckResult, RemediationOutcome, RemediationResult
from dr_reconciler.engine.strategies import Strategy, first_success
from dr_reconciler.utils.errors import CommandError, ErrorCategory
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


def cluster_tag_key(infra_name: str) -> str:
    return f"kubernetes.io/cluster/{infra_name}"


def find_gateway_group(
    tagger: SecurityGroupTagger,
    infra: Resource,
    settings: SubmarinerSettings
) -> Optional[str]:
    """Locate the gateway security group, most specific filter first."""
    infra_name = infra.field("status.infrastructureName")
    vpc_id = infra.field("status.platformStatus.aws.vpc")
    pattern = settings.name_pattern

    def by_gateway_tag():
        return tagger.find_first([
            {'Name': f"tag:{settings.gateway_tag}", 'Values': ['true']},
            {'Name': 'tag:Name', 'Values': [pattern]},
        ])

    def by_name():
        return tagger.find_first([{'Name': 'tag:Name', 'Values': [pattern]}])

    def by_infra_prefix():
        if not infra_name:
            return None
        return tagger.find_first([{'Name': 'tag:Name', 'Values': [f"{infra_name}{pattern}"]}])

    def by_vpc():
        if not vpc_id or vpc_id == "None":
            return None
        return tagger.find_first([
            {'Name': 'vpc-id', 'Values': [vpc_id]},
            {'Name': 'group-name', 'Values': [pattern]},
        ])

    return first_success([
        Strategy("gateway-tag", by_gateway_tag),
        Strategy("name", by_name),
        Strategy("infra-prefixed-name", by_infra_prefix),
        Strategy("vpc-group-name", by_vpc),
    ])


def locate(context: CheckContext, cluster: str) -> Tuple[SecurityGroupTagger, str, str]:
    """Tagger, group id and tag key for a cluster.

    Raises:
        CommandError: Infrastructure name or gateway group not found
    """
    settings = context.config.submariner
    infra = context.cluster(cluster).require("infrastructure", None, "cluster")
    infra_name = infra.field("status.infrastructureName")
    if not infra_name:
        raise CommandError(f"Infrastructure name of {cluster} not reported", category=ErrorCategory.VALIDATION)

    tagger = context.aws_for(cluster)
    group_id = find_gateway_group(tagger, infra, settings)
    if group_id is None:
        raise CommandError(f"No Submariner gateway security group found for {cluster}",
                           category=ErrorCategory.NOT_FOUND)
    return tagger, group_id, cluster_tag_key(infra_name)


def security_group_tag_check(cluster: str) -> Check:
    """Gateway security group carries `kubernetes.io/cluster/<infra>=owned`."""
    name = f"submariner-sg-{cluster}"

    def evaluate(context: CheckContext) -> CheckResult:
        tagger, group_id, key = locate(context, cluster)
        expected = context.config.submariner.tag_value
        current = tagger.get_tag(group_id, key)
        data = {'group_id': group_id, 'tag': key, 'value': current}
        if current != expected:
            return CheckResult.fail(
                name, f"{group_id} has {key}={current!r}, expected {expected!r}",
                target=cluster, data=data,
            )
        return CheckResult.ok(name, f"{group_id} tagged {key}={expected}", target=cluster, data=data)

    def remediate(context: CheckContext) -> RemediationResult:
        tagger, group_id, key = locate(context, cluster)
        changed = tagger.ensure_tag(group_id, key, context.config.submariner.tag_value)
        return RemediationResult(
            check=name,
            outcome=RemediationOutcome.APPLIED if changed else RemediationOutcome.NOT_APPLICABLE,
            message=f"{group_id} {'tagged' if changed else 'already tagged'} {key}",
        )

    return Check(name=name, evaluate=evaluate, remediate=remediate, targets=(cluster,),
                 description=f"Submariner gateway security group tag on {cluster}")
