"""Cluster control-plane client backed by the oc CLI."""

import json
import subprocess
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from dr_reconciler.clients.resources import Resource
from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.utils.errors import (
    AccessDeniedError,
    CommandError,
    CredentialError,
    ErrorContext,
    ReconcileError,
    ResourceNotFoundError,
    error_handler,
)
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)

# runner(args, input_text, timeout) -> CompletedProcess
CommandRunner = Callable[[List[str], Optional[str], float], subprocess.CompletedProcess]

PATCH_STRATEGIES = ("merge", "json", "strategic")


class WaitOutcome(Enum):
    """Result of a bounded wait-for-condition."""
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    ERROR = "error"


def subprocess_runner(args: List[str], input_text: Optional[str], timeout: float) -> subprocess.CompletedProcess:
    """Default runner: execute the command and capture text output."""
    return subprocess.run(
        args,
        input=input_text,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


class ClusterClient:
    """Get/list/patch/create/delete/wait against one cluster.

    NotFound is returned as ``None`` (or an empty list / ``False``) rather than
    raised. Other failures are raised as classified ``ReconcileError``
    subclasses: ``AccessDeniedError`` and ``CredentialError`` are terminal,
    ``NetworkError`` is transient and ``CommandError`` covers the rest.
    """

    def __init__(
        self,
        cluster: str,
        kubeconfig: Optional[str] = None,
        oc_binary: str = "oc",
        request_timeout: int = 30,
        runner: Optional[CommandRunner] = None,
        cancel: Optional[CancellationToken] = None
    ):
        """Initialize cluster client.

        Args:
            cluster: Cluster name, used for diagnostics
            kubeconfig: Path of the credential handle; ambient context when None
            oc_binary: oc executable
            request_timeout: Per-request API timeout in seconds
            runner: Command runner (injectable for tests)
            cancel: Cancellation token checked before every remote call
        """
        self.cluster = cluster
        self.kubeconfig = kubeconfig
        self.oc_binary = oc_binary
        self.request_timeout = request_timeout
        self.runner = runner or subprocess_runner
        self.cancel = cancel

    def _base_args(self) -> List[str]:
        args = [self.oc_binary]
        if self.kubeconfig:
            args.append(f"--kubeconfig={self.kubeconfig}")
        args.append(f"--request-timeout={self.request_timeout}s")
        return args

    def _context(self, operation: str, kind: Optional[str] = None,
                 namespace: Optional[str] = None, name: Optional[str] = None) -> ErrorContext:
        return ErrorContext(
            cluster=self.cluster,
            resource_kind=kind,
            namespace=namespace,
            name=name,
            operation=operation,
        )

    def run(
        self,
        args: Sequence[str],
        context: Optional[ErrorContext] = None,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> str:
        """Run an oc sub-command and return stdout.

        Args:
            args: Arguments after the oc binary and global flags
            context: Error context for diagnostics
            input_text: Data passed on stdin
            timeout: Process timeout; defaults to request timeout plus slack

        Returns:
            Command standard output

        Raises:
            ReconcileError: Classified failure
        """
        if self.cancel:
            self.cancel.raise_if_cancelled()

        context = context or self._context(args[0] if args else "oc")
        command = self._base_args() + list(args)
        context.command = " ".join(command[:1] + list(args))
        logger.debug(f"[{self.cluster}] oc {' '.join(args)}")

        try:
            completed = self.runner(command, input_text, timeout or self.request_timeout + 15)
        except (OSError, subprocess.SubprocessError) as e:
            raise error_handler.handle_exception(e, context)

        if completed.returncode != 0:
            raise error_handler.classify_command_failure(completed.stderr, context)

        return completed.stdout or ""

    def _run_json(self, args: Sequence[str], context: ErrorContext, input_text: Optional[str] = None) -> Dict[str, Any]:
        output = self.run(list(args) + ["-o", "json"], context=context, input_text=input_text)
        if not output.strip():
            return {}
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise CommandError(f"Unparseable JSON from oc: {e}", context=context, cause=e)

    @staticmethod
    def _ns_args(namespace: Optional[str]) -> List[str]:
        return ["-n", namespace] if namespace else []

    def get(self, kind: str, namespace: Optional[str], name: str) -> Optional[Resource]:
        """Fetch a single resource.

        Returns:
            The resource, or None when it does not exist
        """
        context = self._context("get", kind, namespace, name)
        try:
            doc = self._run_json(["get", kind, name] + self._ns_args(namespace), context)
        except ResourceNotFoundError:
            logger.debug(f"[{self.cluster}] {context.describe_resource()} not found")
            return None
        return Resource.from_dict(doc)

    def require(self, kind: str, namespace: Optional[str], name: str) -> Resource:
        """Fetch a resource that must exist.

        Raises:
            ResourceNotFoundError: The resource does not exist
        """
        resource = self.get(kind, namespace, name)
        if resource is None:
            context = self._context("get", kind, namespace, name)
            raise ResourceNotFoundError(f"{context.describe_resource()} not found on {self.cluster}", context=context)
        return resource

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None
    ) -> List[Resource]:
        """List resources of a kind, optionally filtered by label selector.

        Returns:
            Matching resources; empty when none or when the namespace is missing
        """
        context = self._context("list", kind, namespace)
        args = ["get", kind] + self._ns_args(namespace)
        if label_selector:
            args += ["-l", label_selector]
        try:
            doc = self._run_json(args, context)
        except ResourceNotFoundError:
            return []
        return [Resource.from_dict(item) for item in doc.get("items") or []]

    def patch(
        self,
        kind: str,
        namespace: Optional[str],
        name: str,
        patch: Any,
        strategy: str = "merge"
    ) -> Resource:
        """Patch a resource.

        Args:
            kind: Resource kind
            namespace: Namespace, None for cluster-scoped kinds
            name: Resource name
            patch: Patch document (dict for merge/strategic, list for json)
            strategy: One of merge, json, strategic

        Returns:
            The patched resource

        Raises:
            ResourceNotFoundError: The resource does not exist
        """
        if strategy not in PATCH_STRATEGIES:
            raise ValueError(f"Unknown patch strategy: {strategy}")
        context = self._context("patch", kind, namespace, name)
        args = ["patch", kind, name] + self._ns_args(namespace) + [
            f"--type={strategy}", "-p", json.dumps(patch)
        ]
        return Resource.from_dict(self._run_json(args, context))

    def create(
        self,
        kind: str,
        namespace: Optional[str],
        manifest: Dict[str, Any],
        replace_on_conflict: bool = False
    ) -> Resource:
        """Create a resource from a manifest.

        With `replace_on_conflict`, an existing object is updated through
        apply instead of failing.
        """
        manifest = dict(manifest)
        manifest.setdefault("kind", kind)
        metadata = dict(manifest.get("metadata") or {})
        if namespace:
            metadata.setdefault("namespace", namespace)
        manifest["metadata"] = metadata

        context = self._context("create", kind, namespace, metadata.get("name"))
        try:
            return Resource.from_dict(
                self._run_json(["create", "-f", "-"], context, input_text=json.dumps(manifest))
            )
        except CommandError as e:
            if "AlreadyExists" not in e.message and "already exists" not in e.message:
                raise
            if not replace_on_conflict:
                raise
            logger.info(f"[{self.cluster}] {context.describe_resource()} exists, applying instead")
            return self.apply(manifest)

    def apply(self, manifest: Dict[str, Any]) -> Resource:
        """Create or update a resource declaratively."""
        metadata = manifest.get("metadata") or {}
        context = self._context("apply", manifest.get("kind"), metadata.get("namespace"), metadata.get("name"))
        return Resource.from_dict(
            self._run_json(["apply", "-f", "-"], context, input_text=json.dumps(manifest))
        )

    def delete(self, kind: str, namespace: Optional[str], name: str) -> bool:
        """Delete a resource; deleting a missing resource succeeds.

        Returns:
            True when an object was deleted, False when it did not exist
        """
        context = self._context("delete", kind, namespace, name)
        try:
            output = self.run(
                ["delete", kind, name] + self._ns_args(namespace) + ["--ignore-not-found=true", "--wait=false"],
                context=context,
            )
        except ResourceNotFoundError:
            return False
        return bool(output.strip())

    def wait(
        self,
        kind: str,
        namespace: Optional[str],
        name: Optional[str] = None,
        condition: str = "Ready",
        timeout: int = 60,
        label_selector: Optional[str] = None
    ) -> WaitOutcome:
        """Block until a condition holds, bounded by `timeout` seconds.

        Args:
            kind: Resource kind
            namespace: Namespace
            name: Resource name (mutually exclusive with label_selector)
            condition: Condition type, or "delete" to wait for removal
            timeout: Upper bound in seconds
            label_selector: Wait for every resource matching the selector

        Returns:
            WaitOutcome
        """
        if bool(name) == bool(label_selector):
            raise ValueError("wait needs exactly one of name or label_selector")

        target = f"{kind}/{name}" if name else kind
        for_arg = "--for=delete" if condition == "delete" else f"--for=condition={condition}"
        args = ["wait", for_arg, target] + self._ns_args(namespace) + [f"--timeout={timeout}s"]
        if label_selector:
            args += ["-l", label_selector]

        context = self._context("wait", kind, namespace, name)
        try:
            self.run(args, context=context, timeout=timeout + self.request_timeout + 15)
        except ResourceNotFoundError:
            if condition == "delete":
                return WaitOutcome.SUCCESS
            return WaitOutcome.ERROR
        except (AccessDeniedError, CredentialError):
            raise
        except ReconcileError as e:
            if "timed out waiting" in e.message:
                logger.info(f"[{self.cluster}] Timed out after {timeout}s waiting for {target} {condition}")
                return WaitOutcome.TIMED_OUT
            logger.warning(f"[{self.cluster}] Wait for {target} {condition} failed: {e.message}")
            return WaitOutcome.ERROR
        return WaitOutcome.SUCCESS

    def api_resource_exists(self, crd_name: str) -> bool:
        """Whether a CustomResourceDefinition is installed."""
        return self.get("customresourcedefinition", None, crd_name) is not None

    def is_reachable(self) -> bool:
        """Probe the API server with the configured credentials."""
        try:
            self.run(["get", "nodes", "-o", "name"], context=self._context("probe", "node"))
        except AccessDeniedError:
            # Authenticated; listing nodes just isn't permitted
            return True
        except ReconcileError as e:
            logger.info(f"[{self.cluster}] API server not reachable: {e.message}")
            return False
        return True
