"""Check definitions, evaluation context and the check registry."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.models import CheckResult, ClusterTarget, Reachability, RemediationResult
from dr_reconciler.utils.errors import (
    AccessDeniedError,
    CancelledError,
    CredentialError,
    ReconcileError,
    ResourceNotFoundError,
)
from dr_reconciler.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

# target -> ClusterClient bound to its credential handle
ClientFactory = Callable[[ClusterTarget], Any]
# cluster name -> SecurityGroupTagger for that cluster's cloud account
CloudFactory = Callable[[str], Any]


@dataclass(frozen=True)
class Check:
    """A named predicate with an optional remediation.

    `evaluate` and `remediate` receive a read-only CheckContext. `targets`
    lists the clusters the check depends on; when one of them failed to
    resolve, the check fails without being invoked.
    """
    name: str
    evaluate: Callable[['CheckContext'], CheckResult]
    remediate: Optional[Callable[['CheckContext'], RemediationResult]] = None
    targets: Sequence[str] = ()
    description: str = ""


class CheckContext:
    """What a check may look at: resolved targets, clients and configuration."""

    def __init__(
        self,
        targets: Mapping[str, ClusterTarget],
        clients: ClientFactory,
        config: Any = None,
        cancel: Optional[CancellationToken] = None,
        dry_run: bool = False,
        aws: Optional[CloudFactory] = None
    ):
        """Initialize check context.

        Args:
            targets: Resolved cluster targets by name
            clients: Factory building a cluster client for a target
            config: Job configuration
            cancel: Cancellation token for the run
            dry_run: Whether mutations are suppressed
            aws: Factory building a security group tagger for a cluster
        """
        self.targets = MappingProxyType(dict(targets))
        self.config = config
        self.cancel = cancel or CancellationToken()
        self.dry_run = dry_run
        self._client_factory = clients
        self._aws_factory = aws
        self._clients: Dict[str, Any] = {}
        self._aws: Dict[str, Any] = {}

    def target(self, name: str) -> Optional[ClusterTarget]:
        return self.targets.get(name)

    @property
    def hub(self) -> Optional[ClusterTarget]:
        for target in self.targets.values():
            if target.is_hub:
                return target
        return None

    def managed(self) -> List[ClusterTarget]:
        return [t for t in self.targets.values() if not t.is_hub]

    def cluster(self, name: str):
        """Cluster client for a named target.

        Raises:
            CredentialError: The target is unknown or its credentials did not resolve
        """
        if name not in self._clients:
            target = self.targets.get(name)
            if target is None:
                raise CredentialError(f"No credentials resolved for unknown cluster {name}")
            if target.error:
                raise CredentialError(f"Credential resolution failed for {name}: {target.error}")
            self._clients[name] = self._client_factory(target)
        return self._clients[name]

    def aws_for(self, cluster: str):
        """Security group tagger using the cloud credentials of a managed cluster."""
        if self._aws_factory is None:
            raise CredentialError(f"No cloud credentials configured for {cluster}")
        if cluster not in self._aws:
            self._aws[cluster] = self._aws_factory(cluster)
        return self._aws[cluster]

    def raise_if_cancelled(self) -> None:
        self.cancel.raise_if_cancelled()


def credential_failure(check: Check, target: Optional[ClusterTarget], name: str) -> CheckResult:
    """Result for a check whose dependent target did not resolve."""
    if target is None:
        reason = "cluster is not a configured target"
    elif target.error:
        reason = target.error
    elif target.reachability == Reachability.UNREACHABLE:
        reason = "API server unreachable with the resolved credentials"
    else:
        reason = "credentials were never resolved"
    terminal = bool(target and target.error_terminal)
    hint = f" ({target.error_hint})" if terminal and target.error_hint else ""
    return CheckResult.fail(
        check.name,
        f"Credential resolution failed for target {name}: {reason}{hint}",
        target=name,
        data={'credential_resolution': 'failed', 'reason': reason},
        terminal=terminal,
    )


class CheckRegistry:
    """Ordered set of checks evaluated together each attempt."""

    def __init__(self, checks: Iterable[Check] = ()):
        self._checks: Dict[str, Check] = {}
        for check in checks:
            self.register(check)

    def register(self, check: Check) -> Check:
        if check.name in self._checks:
            raise ValueError(f"Check already registered: {check.name}")
        self._checks[check.name] = check
        return check

    def get(self, name: str) -> Optional[Check]:
        return self._checks.get(name)

    def names(self) -> List[str]:
        return list(self._checks)

    def __iter__(self) -> Iterator[Check]:
        return iter(list(self._checks.values()))

    def __len__(self) -> int:
        return len(self._checks)

    def evaluate(self, check: Check, context: CheckContext) -> CheckResult:
        """Evaluate one check, converting every failure into a result.

        Only cancellation escapes. Missing resources yield INDETERMINATE,
        permission and credential errors yield a terminal FAIL and anything
        else yields FAIL with the error text.

        Args:
            check: Check to evaluate
            context: Evaluation context

        Returns:
            CheckResult named after the check
        """
        context.raise_if_cancelled()

        for name in check.targets:
            target = context.target(name)
            if target is None or not target.resolved:
                result = credential_failure(check, target, name)
                logger.warning(f"{check.name}: {result.message}")
                return result

        with LogContext(logger, check=check.name):
            try:
                result = check.evaluate(context)
            except CancelledError:
                raise
            except ResourceNotFoundError as e:
                missing = e.context.describe_resource() or e.message
                result = CheckResult.indeterminate(
                    check.name,
                    f"Resource not found: {missing}",
                    target=e.context.cluster,
                )
            except (AccessDeniedError, CredentialError) as e:
                hint = f" ({e.suggestions[0]})" if e.suggestions else ""
                result = CheckResult.fail(
                    check.name,
                    f"{e.message}{hint}",
                    target=e.context.cluster,
                    terminal=True,
                )
            except ReconcileError as e:
                result = CheckResult.fail(check.name, e.message, target=e.context.cluster)
            except Exception as e:
                logger.debug(f"{check.name} raised", exc_info=True)
                result = CheckResult.fail(check.name, f"{type(e).__name__}: {e}")

        if not isinstance(result, CheckResult):
            result = CheckResult.fail(check.name, f"Check returned {type(result).__name__}, not a CheckResult")
        elif result.check != check.name:
            result = result.model_copy(update={'check': check.name})

        if result.passed:
            logger.info(f"PASS {check.name}: {result.message}")
        else:
            logger.warning(f"{result.outcome.value.upper()} {check.name}: {result.message}")
        return result

    def evaluate_all(self, context: CheckContext) -> List[CheckResult]:
        """Evaluate every registered check in registration order."""
        return [self.evaluate(check, context) for check in self]
