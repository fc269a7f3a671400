"""Wiring of configuration, credential resolution and the reconciliation driver."""

from typing import Callable, Optional

from dr_reconciler.clients.cluster import CommandRunner
from dr_reconciler.config.models import ReconcilerConfig
from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.driver import ReconciliationDriver, Reporter
from dr_reconciler.jobs import build_job
from dr_reconciler.targets.aws import AWSCredentialResolver
from dr_reconciler.targets.kubeconfig import KubeconfigResolver
from dr_reconciler.utils.errors import ReconcileError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


def with_discovered_clusters(configuration: ReconcilerConfig, resolver: KubeconfigResolver) -> ReconcilerConfig:
    """Replace the configured managed clusters with those registered on the hub.

    The configured list is kept when discovery fails or finds nothing.
    """
    try:
        discovered = resolver.discover_managed_clusters()
    except ReconcileError as e:
        logger.warning(f"Managed cluster discovery failed, using configured clusters: {e.message}")
        return configuration
    if not discovered:
        return configuration

    clusters = configuration.clusters.model_copy(update={'managed': discovered})
    return configuration.model_copy(update={'clusters': clusters})


def build_driver(
    configuration: ReconcilerConfig,
    job: str,
    dry_run: Optional[bool] = None,
    check_only: bool = False,
    runner: Optional[CommandRunner] = None,
    cancel: Optional[CancellationToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
    reporter: Optional[Reporter] = None
) -> ReconciliationDriver:
    """Build a driver for one job with real credential resolution.

    Args:
        configuration: Validated configuration
        job: Job name from the job registry
        dry_run: Overrides `configuration.dry_run` when given
        check_only: Evaluate only
        runner: oc command runner; subprocess by default
        cancel: Cancellation token
        sleep: Sleep between attempts; cancellable by default
        reporter: Progress reporter

    Raises:
        KeyError: Unknown job
    """
    cancel = cancel or CancellationToken()
    resolver = KubeconfigResolver(configuration.clusters, runner=runner, cancel=cancel, sleep=sleep)

    if configuration.clusters.discover_managed:
        configuration = with_discovered_clusters(configuration, resolver)

    definition = build_job(job, configuration)
    driver = ReconciliationDriver(
        definition,
        resolver=resolver,
        clients=resolver.client_for,
        config=configuration,
        sleep=sleep,
        cancel=cancel,
        dry_run=configuration.dry_run if dry_run is None else dry_run,
        check_only=check_only,
        reporter=reporter,
    )

    def cluster_client(name: str):
        return resolver.client_for(driver.targets[name])

    def tagger(cluster: str):
        aws = AWSCredentialResolver(resolver.hub_client(), cluster_client, configuration.submariner)
        return aws.tagger(cluster)

    driver.aws = tagger
    return driver


def run(configuration: ReconcilerConfig, job: str, **kwargs) -> int:
    """Run a job to completion.

    Args:
        configuration: Validated configuration
        job: Job name
        **kwargs: Passed to build_driver

    Returns:
        Process exit code: 0 when every check passed, 1 otherwise
    """
    return build_driver(configuration, job, **kwargs).run()
