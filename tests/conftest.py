import json
import subprocess
from unittest.mock import MagicMock

import pytest

from dr_reconciler.config.models import ReconcilerConfig
from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.checks import CheckContext
from dr_reconciler.engine.models import ClusterTarget, Reachability


def completed(stdout="", stderr="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeOc:
    """Scripted oc runner: maps an argument prefix to a response.

    Responses are dicts (returned as JSON), strings (raw stdout) or
    CompletedProcess instances. Unscripted commands fail with NotFound.
    """

    def __init__(self):
        self.responses = []
        self.calls = []

    def on(self, *prefix, response=None):
        self.responses.insert(0, (list(prefix), response))
        return self

    def fail(self, *prefix, stderr="error", returncode=1):
        return self.on(*prefix, response=completed(stderr=stderr, returncode=returncode))

    def commands(self):
        return [call[0] for call in self.calls]

    def __call__(self, args, input_text, timeout):
        # Drop the binary and global flags
        sub = [a for a in args[1:] if not a.startswith("--kubeconfig=") and not a.startswith("--request-timeout=")]
        self.calls.append((sub, input_text))
        for prefix, response in self.responses:
            if sub[:len(prefix)] == prefix:
                if isinstance(response, subprocess.CompletedProcess):
                    return response
                if isinstance(response, (dict, list)):
                    return completed(stdout=json.dumps(response))
                return completed(stdout=response or "")
        return completed(stderr='Error from server (NotFound): not found', returncode=1)


@pytest.fixture
def fake_oc():
    return FakeOc()


@pytest.fixture
def config():
    return ReconcilerConfig()


@pytest.fixture
def no_sleep():
    return MagicMock(name="sleep")


def resolved(name, is_hub=False):
    return ClusterTarget(name=name, kubeconfig=f"/tmp/{name}.yaml", reachability=Reachability.REACHABLE, is_hub=is_hub)


def unresolved(name, error="No kubeconfig secret found", is_hub=False):
    return ClusterTarget(name=name, reachability=Reachability.UNKNOWN, error=error, is_hub=is_hub)


@pytest.fixture
def targets():
    return {
        "local-cluster": resolved("local-cluster", is_hub=True),
        "ocp-primary": resolved("ocp-primary"),
        "ocp-secondary": resolved("ocp-secondary"),
    }


@pytest.fixture
def make_context(config, targets):
    """Context whose cluster clients come from a {name: client} mapping."""

    def build(clients, aws=None, cancel=None, context_targets=None, dry_run=False):
        return CheckContext(
            targets=context_targets or targets,
            clients=lambda target: clients[target.name],
            config=config,
            cancel=cancel or CancellationToken(),
            dry_run=dry_run,
            aws=aws,
        )

    return build
