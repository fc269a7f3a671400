"""Resolution of cluster targets into reachable credential handles."""

import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import yaml

from dr_reconciler.clients.cluster import ClusterClient, CommandRunner
from dr_reconciler.clients.resources import Resource
from dr_reconciler.config.models import ClusterSettings
from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.models import ClusterTarget, Reachability
from dr_reconciler.engine.strategies import Strategy, first_success
from dr_reconciler.utils.errors import (
    CancelledError,
    ErrorContext,
    NetworkError,
    ReconcileError,
    ResourceNotFoundError,
)
from dr_reconciler.utils.logging import LogContext, get_logger
from dr_reconciler.utils.retry import BackoffPolicy, RetryStrategy

logger = get_logger(__name__)

KUBECONFIG_DATA_KEYS = ("kubeconfig", "raw-kubeconfig")
LOCAL_CLUSTER = "local-cluster"


def write_private_file(path: Path, content: str) -> None:
    """Write `content` readable by the owner only."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)


def kubeconfig_from_secret(secret: Optional[Resource]) -> Optional[str]:
    """Decoded kubeconfig from a secret, trying the known data keys in order."""
    if secret is None:
        return None
    for key in KUBECONFIG_DATA_KEYS:
        value = secret.decoded(key)
        if value and value.strip():
            return value
    return None


class KubeconfigResolver:
    """Turns cluster names into ClusterTargets with a probed kubeconfig.

    The hub uses the in-cluster service account when running inside a pod,
    otherwise the ambient oc context. Managed cluster kubeconfigs are read
    from secrets on the hub and written under `kubeconfig_dir`.
    """

    def __init__(
        self,
        settings: ClusterSettings,
        runner: Optional[CommandRunner] = None,
        cancel: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize resolver.

        Args:
            settings: Cluster topology and access settings
            runner: oc command runner shared by every client
            cancel: Cancellation token
            sleep: Sleep between credential retries; cancellable by default
        """
        self.settings = settings
        self.runner = runner
        self.cancel = cancel or CancellationToken()
        self.kubeconfig_dir = Path(settings.kubeconfig_dir)
        retry = settings.credential_retry
        self.retry = RetryStrategy(
            max_retries=retry.max_retries,
            backoff=BackoffPolicy(base_delay=retry.base_delay, multiplier=2.0, max_delay=retry.max_delay),
            sleep=sleep or self.cancel.sleep,
            retry_all=True,
        )
        self._hub: Optional[ClusterTarget] = None

    def client_for(self, target: ClusterTarget) -> ClusterClient:
        """Cluster client bound to a target's credential handle."""
        return ClusterClient(
            target.name,
            kubeconfig=target.kubeconfig,
            oc_binary=self.settings.oc_binary,
            request_timeout=self.settings.request_timeout,
            runner=self.runner,
            cancel=self.cancel,
        )

    def hub_client(self) -> ClusterClient:
        return self.client_for(self.hub_target())

    def hub_target(self) -> ClusterTarget:
        """Hub target, resolved once per resolver."""
        if self._hub is None:
            self._hub = self._resolve(self.settings.hub)
        return self._hub

    def resolve(self, names: Iterable[str]) -> Dict[str, ClusterTarget]:
        """Resolve every named cluster; failures are recorded on the target.

        Args:
            names: Cluster names; the hub is recognised by name

        Returns:
            Targets by name, in the given order
        """
        targets = {}
        for name in names:
            if name == self.settings.hub:
                targets[name] = self.hub_target()
            else:
                targets[name] = self._resolve(name)
        return targets

    def refresh(self, target: ClusterTarget) -> ClusterTarget:
        """Re-resolve a target whose credentials failed or went stale."""
        if target.is_hub:
            self._hub = None
            return self.hub_target()
        return self._resolve(target.name)

    def discover_managed_clusters(self) -> List[str]:
        """Names of ManagedClusters registered with the hub, excluding the hub itself."""
        names = []
        for cluster in self.hub_client().list("managedclusters"):
            if cluster.name and cluster.name not in (LOCAL_CLUSTER, self.settings.hub):
                names.append(cluster.name)
        logger.info(f"Discovered managed clusters: {', '.join(names) or 'none'}")
        return names

    def _resolve(self, name: str) -> ClusterTarget:
        is_hub = name == self.settings.hub
        with LogContext(logger, cluster=name, operation='resolve_credentials'):
            try:
                kubeconfig = self.retry.execute_with_retry(self._acquire, name, is_hub)
            except CancelledError:
                raise
            except ReconcileError as e:
                logger.error(f"Credential resolution failed for {name}: {e.message}")
                return ClusterTarget(
                    name=name,
                    is_hub=is_hub,
                    reachability=Reachability.UNREACHABLE if e.is_transient else Reachability.UNKNOWN,
                    error=e.message,
                    error_terminal=e.is_terminal,
                    error_hint=e.suggestions[0] if e.suggestions else None,
                )
            except OSError as e:
                logger.error(f"Could not write kubeconfig for {name}: {e}")
                return ClusterTarget(name=name, is_hub=is_hub, error=f"Could not write kubeconfig: {e}")

        logger.info(f"Resolved credentials for {name}")
        return ClusterTarget(name=name, kubeconfig=kubeconfig, is_hub=is_hub, reachability=Reachability.REACHABLE)

    def _acquire(self, name: str, is_hub: bool) -> Optional[str]:
        """Obtain and probe a kubeconfig; raises when it cannot be used."""
        self.cancel.raise_if_cancelled()
        context = ErrorContext(cluster=name, operation='resolve_credentials')

        if is_hub:
            kubeconfig = self._hub_kubeconfig()
        else:
            content = first_success(self._secret_strategies(), name)
            if content is None:
                raise ResourceNotFoundError(
                    f"No kubeconfig secret found for {name} in namespace {name}",
                    context=context,
                )
            kubeconfig = str(self.kubeconfig_dir / f"{name}-kubeconfig.yaml")
            write_private_file(Path(kubeconfig), content)

        probe = self.client_for(ClusterTarget(name=name, kubeconfig=kubeconfig, is_hub=is_hub))
        if not probe.is_reachable():
            raise NetworkError(f"API server of {name} is not reachable with the resolved credentials",
                               context=context)
        return kubeconfig

    def _hub_kubeconfig(self) -> Optional[str]:
        """In-cluster service account kubeconfig, or None for the ambient context."""
        sa_dir = Path(self.settings.service_account_dir)
        token_file = sa_dir / "token"
        if not token_file.exists():
            return None

        cluster = {"server": self.settings.api_server}
        ca_file = sa_dir / "ca.crt"
        if ca_file.exists():
            cluster["certificate-authority"] = str(ca_file)

        document = {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": "in-cluster", "cluster": cluster}],
            "users": [{"name": "service-account", "user": {"tokenFile": str(token_file)}}],
            "contexts": [{"name": "in-cluster", "context": {"cluster": "in-cluster", "user": "service-account"}}],
            "current-context": "in-cluster",
        }
        path = self.kubeconfig_dir / f"{self.settings.hub}-kubeconfig.yaml"
        write_private_file(path, yaml.safe_dump(document, default_flow_style=False, sort_keys=False))
        return str(path)

    def _secret_strategies(self) -> List[Strategy]:
        hub = self.hub_client()

        def admin_secret(cluster: str) -> Optional[str]:
            return kubeconfig_from_secret(hub.get("secret", cluster, f"{cluster}-admin-kubeconfig"))

        def any_kubeconfig_secret(cluster: str) -> Optional[str]:
            for secret in hub.list("secret", cluster):
                if "kubeconfig" in secret.name:
                    content = kubeconfig_from_secret(secret)
                    if content:
                        return content
            return None

        return [
            Strategy("admin-kubeconfig-secret", admin_secret),
            Strategy("kubeconfig-named-secret", any_kubeconfig_secret),
        ]
