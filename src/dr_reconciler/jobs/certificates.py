"""CA bundle extraction, distribution and validation across hub and managed clusters."""

import base64
import time
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

import yaml

from dr_reconciler.clients.cluster import ClusterClient, WaitOutcome
from dr_reconciler.config.models import CertificateSettings, PodRestartTarget, ReconcilerConfig
from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.composite import PEM_MARKER, check_min_size, cross_target_check
from dr_reconciler.engine.models import CheckResult, RemediationOutcome, RemediationResult
from dr_reconciler.engine.strategies import first_success
from dr_reconciler.utils.errors import (
    CancelledError,
    CommandError,
    ErrorCategory,
    ErrorContext,
    ReconcileError,
    ResourceNotFoundError,
)
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

BEGIN_LINE = "-----BEGIN CERTIFICATE-----"
END_LINE = "-----END CERTIFICATE-----"
HUB_LABEL = "hub"
POD_POLL_INTERVAL = 5.0


def split_certificates(pem: Optional[str]) -> List[str]:
    """Complete PEM certificate blocks in order of appearance."""
    certs, current = [], None
    for line in (pem or "").splitlines():
        line = line.strip()
        if line == BEGIN_LINE:
            current = [line]
        elif current is not None:
            current.append(line)
            if line == END_LINE:
                certs.append("\n".join(current))
                current = None
    return certs


def source_label(cluster: str, is_hub: bool) -> str:
    """Name a cluster's CA material is filed under in the combined bundle."""
    return HUB_LABEL if is_hub else cluster


def marker_for(label: str) -> str:
    """Marker line preceding a cluster's CA certificates."""
    return f"# CA from {label}-ca"


def build_combined_bundle(sources: Sequence[Tuple[str, str]], max_per_source: int = 5) -> str:
    """Concatenate CA sources, each preceded by a `# CA from <source>` line.

    Args:
        sources: (source name, PEM text) pairs, e.g. ("hub-ca", "...")
        max_per_source: Certificates kept from each source

    Returns:
        Combined bundle; empty when no source holds a certificate
    """
    lines = []
    for name, pem in sources:
        certs = split_certificates(pem)[:max_per_source]
        if not certs:
            logger.debug(f"CA source {name} has no certificates, skipping")
            continue
        lines.append(f"# CA from {name}")
        for cert in certs:
            lines.append(cert)
            lines.append("")
    return "\n".join(lines) + "\n" if lines else ""


def count_mentions(bundle: str, name: str) -> int:
    """Number of bundle lines mentioning `name`."""
    return sum(1 for line in bundle.splitlines() if name in line)


def read_bundle(client: ClusterClient, settings: CertificateSettings) -> Optional[str]:
    """Distributed CA bundle of a cluster, None when the ConfigMap or key is absent."""
    configmap = client.get("configmap", settings.configmap_namespace, settings.configmap_name)
    if configmap is None:
        return None
    return configmap.data.get(settings.bundle_key)


def extract_trusted_ca(client: ClusterClient, settings: CertificateSettings) -> Optional[str]:
    configmap = client.get("configmap", settings.trusted_ca_namespace, settings.trusted_ca_configmap)
    if configmap is None:
        return None
    return configmap.data.get("ca-bundle.crt") or None


def extract_ingress_ca(client: ClusterClient, settings: CertificateSettings) -> Optional[str]:
    """Router CA, trying each configured secret key in turn."""
    secret = client.get("secret", settings.router_ca_namespace, settings.router_ca_secret)
    if secret is None:
        return None
    return first_success([lambda key=key: secret.decoded(key) for key in settings.router_ca_keys])


def collect_ca_sources(context: CheckContext, settings: CertificateSettings) -> List[Tuple[str, str]]:
    """Trusted and ingress CAs of the hub and every managed cluster.

    Raises:
        CommandError: The trusted CA of a cluster could not be extracted
    """
    sources, missing = [], []
    clusters = ([context.hub] if context.hub else []) + context.managed()
    for target in clusters:
        context.raise_if_cancelled()
        label = source_label(target.name, target.is_hub)
        try:
            client = context.cluster(target.name)
            trusted = extract_trusted_ca(client, settings)
            ingress = extract_ingress_ca(client, settings)
        except CancelledError:
            raise
        except ReconcileError as e:
            logger.error(f"Could not extract CA from {target.name}: {e.message}")
            missing.append(target.name)
            continue

        if not trusted:
            missing.append(target.name)
            continue
        sources.append((f"{label}-ca", trusted))
        if ingress:
            sources.append((f"{label}-ingress-ca", ingress))
        else:
            logger.warning(f"No ingress CA found on {target.name}, continuing without it")

    if missing:
        raise CommandError(
            f"CA material missing from required clusters: {', '.join(missing)}",
            category=ErrorCategory.VALIDATION,
        )
    return sources


def apply_bundle(client: ClusterClient, settings: CertificateSettings, bundle: str) -> None:
    """Write the bundle ConfigMap and point the cluster proxy at it."""
    manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": settings.configmap_name, "namespace": settings.configmap_namespace},
        "data": {settings.bundle_key: bundle},
    }
    client.create("configmap", settings.configmap_namespace, manifest, replace_on_conflict=True)
    client.patch("proxy", None, "cluster", {"spec": {"trustedCA": {"name": settings.configmap_name}}})
    logger.info(f"Applied CA bundle ({len(bundle)} bytes) to {client.cluster}")


def load_ramen_config(hub: ClusterClient, settings: CertificateSettings) -> dict:
    """Parsed Ramen hub operator configuration.

    Raises:
        ResourceNotFoundError: The ConfigMap does not exist
        CommandError: The embedded YAML is not a mapping
    """
    try:
        configmap = hub.require("configmap", settings.ramen_namespace, settings.ramen_configmap)
    except ResourceNotFoundError as e:
        raise ResourceNotFoundError(
            f"Ramen hub operator config {settings.ramen_namespace}/{settings.ramen_configmap} does not exist "
            f"on {hub.cluster}; install or reconcile the Ramen hub operator before distributing CA bundles",
            context=e.context,
            cause=e,
        )
    try:
        document = yaml.safe_load(configmap.data.get(settings.ramen_config_key) or "") or {}
    except yaml.YAMLError as e:
        raise CommandError(f"Unparseable {settings.ramen_config_key}: {e}", category=ErrorCategory.VALIDATION)
    if not isinstance(document, dict):
        raise CommandError(f"{settings.ramen_config_key} is not a mapping", category=ErrorCategory.VALIDATION)
    return document


def s3_profiles(document: dict) -> List[dict]:
    return [p for p in document.get("s3StoreProfiles") or [] if isinstance(p, dict)]


def update_ramen_config(hub: ClusterClient, settings: CertificateSettings, bundle: str) -> int:
    """Set `caCertificates` on every s3StoreProfile to the base64 bundle.

    Returns:
        Number of profiles updated

    Raises:
        CommandError: Fewer profiles than required
    """
    document = load_ramen_config(hub, settings)
    profiles = s3_profiles(document)
    if len(profiles) < settings.min_s3_profiles:
        raise CommandError(
            f"Insufficient s3StoreProfiles: found {len(profiles)}, at least {settings.min_s3_profiles} required",
            category=ErrorCategory.VALIDATION,
            context=ErrorContext(cluster=hub.cluster, resource_kind="configmap",
                                 namespace=settings.ramen_namespace, name=settings.ramen_configmap),
        )

    encoded = base64.b64encode(bundle.encode("utf-8")).decode("ascii")
    for profile in profiles:
        profile["caCertificates"] = encoded

    content = yaml.safe_dump(document, default_flow_style=False, sort_keys=False, allow_unicode=True)
    hub.patch("configmap", settings.ramen_namespace, settings.ramen_configmap,
              {"data": {settings.ramen_config_key: content}})
    logger.info(f"Updated {len(profiles)} s3StoreProfiles with caCertificates")
    return len(profiles)


def restart_pods(
    client: ClusterClient,
    target: PodRestartTarget,
    timeout: int,
    cancel: Optional[CancellationToken] = None,
    poll_interval: float = POD_POLL_INTERVAL
) -> Optional[WaitOutcome]:
    """Delete matching pods and wait for their replacements to become Ready.

    Replacements are created asynchronously, so the readiness wait is
    repeated until matching pods exist and report Ready or `timeout`
    seconds have passed.

    Args:
        client: Cluster the pods run on
        target: Namespace and selector of the pods
        timeout: Upper bound in seconds for the replacements
        cancel: Cancellation token; the client's token by default
        poll_interval: Seconds between checks for replacement pods

    Returns:
        Outcome of the readiness wait, None when no pods matched
    """
    cancel = cancel or client.cancel or CancellationToken()
    pods = client.list("pods", target.namespace, label_selector=target.selector)
    if not pods:
        logger.warning(f"No pods matching {target.selector} in {target.namespace} on {client.cluster}")
        return None

    for pod in pods:
        client.delete("pod", target.namespace, pod.name)
    for pod in pods:
        client.wait("pod", target.namespace, name=pod.name, condition="delete", timeout=60)

    deadline = time.monotonic() + timeout
    outcome = WaitOutcome.TIMED_OUT
    while True:
        cancel.raise_if_cancelled()
        remaining = int(deadline - time.monotonic())
        if remaining <= 0:
            break
        if client.list("pods", target.namespace, label_selector=target.selector):
            outcome = client.wait("pods", target.namespace, condition="Ready", timeout=remaining,
                                  label_selector=target.selector)
            # ERROR covers "no matching resources" while replacements are recreated
            if outcome != WaitOutcome.ERROR:
                break
        else:
            logger.debug(f"Waiting for pods {target.selector} to appear on {client.cluster}")
        if not cancel.sleep(poll_interval):
            cancel.raise_if_cancelled()

    if outcome == WaitOutcome.SUCCESS:
        logger.info(f"Pods {target.selector} ready again on {client.cluster}")
    else:
        logger.warning(f"Pods {target.selector} on {client.cluster}: {outcome.value}")
    return outcome


def delete_placeholder_bundles(client: ClusterClient, settings: CertificateSettings) -> bool:
    """Remove a bundle ConfigMap that still holds placeholder content."""
    bundle = read_bundle(client, settings)
    if bundle is None or not any(marker in bundle for marker in settings.placeholder_markers):
        return False
    deleted = client.delete("configmap", settings.configmap_namespace, settings.configmap_name)
    if deleted:
        logger.info(f"Deleted placeholder CA bundle ConfigMap on {client.cluster}")
    return deleted


def distribute_ca_bundle(context: CheckContext) -> RemediationResult:
    """Extract every cluster's CAs, combine them and distribute the result.

    The hub and every managed cluster get the bundle ConfigMap and proxy
    trust, the Ramen hub configuration gets the base64 bundle and the DR
    operator and Velero pods are restarted. Per-cluster failures are
    collected so one unreachable cluster does not block the others.
    """
    config: ReconcilerConfig = context.config
    settings = config.certificates
    name = "distribute-ca-bundle"

    sources = collect_ca_sources(context, settings)
    bundle = build_combined_bundle(sources, settings.max_certs_per_source)
    size_check = check_min_size(name, bundle, settings.min_bundle_size)
    if not size_check.passed:
        return RemediationResult(check=name, outcome=RemediationOutcome.FAILED,
                                 message=f"Combined bundle rejected: {size_check.message}")
    logger.info(f"Combined CA bundle: {len(sources)} sources, {bundle.count(PEM_MARKER)} certificates")

    failures = []
    hub = context.hub
    clusters = ([hub] if hub else []) + context.managed()
    for target in clusters:
        context.raise_if_cancelled()
        try:
            apply_bundle(context.cluster(target.name), settings, bundle)
        except CancelledError:
            raise
        except ReconcileError as e:
            failures.append(f"{target.name}: {e.message}")

    if hub is not None:
        try:
            update_ramen_config(context.cluster(hub.name), settings, bundle)
        except CancelledError:
            raise
        except ReconcileError as e:
            failures.append(f"ramen config: {e.message}")

    for restart in settings.restart:
        if restart.hub:
            targets = [hub] if hub else []
        else:
            targets = context.managed()
        for target in targets:
            try:
                outcome = restart_pods(context.cluster(target.name), restart, settings.restart_timeout,
                                       cancel=context.cancel)
            except CancelledError:
                raise
            except ReconcileError as e:
                failures.append(f"{target.name} restart {restart.selector}: {e.message}")
                continue
            if outcome in (WaitOutcome.TIMED_OUT, WaitOutcome.ERROR):
                failures.append(f"{target.name}: pods {restart.selector} not ready ({outcome.value})")

    if failures:
        return RemediationResult(check=name, outcome=RemediationOutcome.FAILED, message="; ".join(failures))
    return RemediationResult(check=name, outcome=RemediationOutcome.APPLIED,
                             message=f"Distributed {len(bundle)} byte bundle to {len(clusters)} clusters")


def cleanup_and_distribute(context: CheckContext) -> RemediationResult:
    """Delete placeholder bundles on managed clusters, then redistribute."""
    settings = context.config.certificates
    for target in context.managed():
        try:
            delete_placeholder_bundles(context.cluster(target.name), settings)
        except CancelledError:
            raise
        except ReconcileError as e:
            logger.warning(f"Placeholder cleanup on {target.name} failed: {e.message}")
    return distribute_ca_bundle(context)


def ca_configured_check(cluster: str, remediate=None) -> Check:
    """Bundle ConfigMap present, large enough, and trusted by the cluster proxy."""

    def evaluate(context: CheckContext) -> CheckResult:
        settings = context.config.certificates
        client = context.cluster(cluster)
        name = f"ca-configured-{cluster}"

        bundle = read_bundle(client, settings)
        if bundle is None:
            return CheckResult.fail(
                name,
                f"ConfigMap {settings.configmap_namespace}/{settings.configmap_name} "
                f"with key {settings.bundle_key} not found",
                target=cluster,
            )
        size = check_min_size(name, bundle, settings.min_bundle_size, target=cluster)
        if not size.passed:
            return size

        proxy = client.get("proxy", None, "cluster")
        trusted = proxy.field("spec.trustedCA.name") if proxy else None
        if trusted != settings.configmap_name:
            return CheckResult.fail(
                name,
                f"Proxy trustedCA is {trusted!r}, expected {settings.configmap_name!r}",
                target=cluster,
                data={'trusted_ca': trusted},
            )
        return CheckResult.ok(name, f"CA bundle {size.data['size']} bytes, proxy trusts it",
                              target=cluster, data=size.data)

    return Check(
        name=f"ca-configured-{cluster}",
        evaluate=evaluate,
        remediate=remediate,
        targets=(cluster,),
        description=f"CA bundle ConfigMap and proxy trust on {cluster}",
    )


def ca_consistency_check(config: ReconcilerConfig, remediate=None) -> Check:
    """All clusters carry the same bundle with CA material from every cluster."""
    settings = config.certificates
    clusters = config.clusters
    markers = [marker_for(source_label(name, name == clusters.hub)) for name in clusters.all_clusters]

    def fetch(context: CheckContext, cluster: str) -> Optional[str]:
        return read_bundle(context.cluster(cluster), settings)

    check = cross_target_check(
        "ca-bundle-consistency",
        fetch,
        clusters.all_clusters,
        min_bytes=settings.min_bundle_size,
        markers=markers,
        require_identical=True,
        description="Identical CA bundles containing every cluster's CA",
    )
    return replace(check, remediate=remediate) if remediate else check


def hub_bundle_check(config: ReconcilerConfig, remediate=None) -> Check:
    """Hub bundle large enough, with enough certificates from every cluster."""
    hub = config.clusters.hub
    names = [HUB_LABEL] + list(config.clusters.managed)

    def evaluate(context: CheckContext) -> CheckResult:
        settings = context.config.certificates
        bundle = read_bundle(context.cluster(hub), settings)
        result = check_min_size(
            "hub-ca-bundle", bundle,
            min_bytes=settings.precheck_min_bundle_size,
            min_items=settings.min_certificates,
            target=hub,
        )
        if not result.passed:
            return result

        mentions = {name: count_mentions(bundle, name) for name in names}
        short = [f"{n} ({c})" for n, c in mentions.items() if c < settings.min_cluster_mentions]
        if short:
            return CheckResult.fail(
                "hub-ca-bundle",
                f"Missing certificates from: {', '.join(short)}; "
                f"expected at least {settings.min_cluster_mentions} mentions each",
                target=hub,
                data={**result.data, 'mentions': mentions},
            )
        return CheckResult.ok("hub-ca-bundle", f"{result.message}, all clusters present",
                              target=hub, data={**result.data, 'mentions': mentions})

    return Check(
        name="hub-ca-bundle",
        evaluate=evaluate,
        remediate=remediate,
        targets=(hub,),
        description="Hub CA bundle completeness",
    )


def ramen_profiles_check(config: ReconcilerConfig, remediate=None) -> Check:
    """Ramen s3StoreProfiles carry the hub's current bundle."""
    hub = config.clusters.hub

    def evaluate(context: CheckContext) -> CheckResult:
        settings = context.config.certificates
        client = context.cluster(hub)
        profiles = s3_profiles(load_ramen_config(client, settings))
        if len(profiles) < settings.min_s3_profiles:
            return CheckResult.fail(
                "ramen-s3-profiles",
                f"Found {len(profiles)} s3StoreProfiles, at least {settings.min_s3_profiles} required",
                target=hub,
            )

        bundle = read_bundle(client, settings)
        if not bundle:
            return CheckResult.fail("ramen-s3-profiles", "Hub CA bundle missing", target=hub)
        expected = base64.b64encode(bundle.encode("utf-8")).decode("ascii")
        stale = [p.get("s3ProfileName") or p.get("name") or str(i)
                 for i, p in enumerate(profiles) if p.get("caCertificates") != expected]
        if stale:
            return CheckResult.fail(
                "ramen-s3-profiles",
                f"Profiles without the current CA bundle: {', '.join(stale)}",
                target=hub,
                data={'stale_profiles': stale},
            )
        return CheckResult.ok("ramen-s3-profiles", f"{len(profiles)} profiles carry the CA bundle", target=hub)

    return Check(
        name="ramen-s3-profiles",
        evaluate=evaluate,
        remediate=remediate,
        targets=(hub,),
        description="Ramen S3 profiles trust the combined CA bundle",
    )
