"""Content and cross-target checks over text artifacts such as CA bundles."""

from itertools import combinations
from typing import Callable, Dict, Optional, Sequence

from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.models import CheckResult

PEM_MARKER = "BEGIN CERTIFICATE"


def check_min_size(
    name: str,
    artifact: Optional[str],
    min_bytes: int = 0,
    min_items: int = 0,
    item_marker: str = PEM_MARKER,
    target: Optional[str] = None
) -> CheckResult:
    """Fail when an artifact is missing, empty or below the configured minimum.

    Args:
        name: Check name
        artifact: Artifact text, None when absent
        min_bytes: Minimum size in bytes
        min_items: Minimum number of `item_marker` occurrences
        item_marker: Substring counted as one item
        target: Cluster the artifact came from

    Returns:
        PASS with size/item counts in `data`, else FAIL naming expected vs observed
    """
    if artifact is None:
        return CheckResult.fail(name, "Artifact is missing", target=target, data={'size': 0, 'items': 0})

    size = len(artifact.encode("utf-8"))
    items = artifact.count(item_marker) if item_marker else 0
    data = {'size': size, 'items': items}

    if size == 0 or size < min_bytes:
        return CheckResult.fail(
            name, f"Artifact too small: {size} bytes, expected at least {min_bytes}",
            target=target, data=data,
        )
    if items < min_items:
        return CheckResult.fail(
            name, f"Artifact has {items} items, expected at least {min_items}",
            target=target, data=data,
        )
    return CheckResult.ok(name, f"{size} bytes, {items} items", target=target, data=data)


def check_required_markers(
    name: str,
    artifacts: Dict[str, str],
    markers: Sequence[str]
) -> CheckResult:
    """Every artifact must contain every marker substring."""
    for target, artifact in artifacts.items():
        missing = [m for m in markers if m not in (artifact or "")]
        if missing:
            return CheckResult.fail(
                name,
                f"{target} is missing marker(s): {', '.join(repr(m) for m in missing)}",
                target=target,
                data={'missing_markers': missing},
            )
    return CheckResult.ok(name, f"All {len(artifacts)} artifacts carry {len(markers)} markers")


def check_identical(name: str, artifacts: Dict[str, str]) -> CheckResult:
    """All artifacts must be byte-for-byte identical.

    Returns:
        FAIL naming the first mismatched pair, else PASS
    """
    for (left, left_text), (right, right_text) in combinations(artifacts.items(), 2):
        if left_text != right_text:
            return CheckResult.fail(
                name,
                f"Artifacts differ between {left} and {right}",
                target=right,
                data={'mismatch': [left, right]},
            )
    return CheckResult.ok(name, f"{len(artifacts)} artifacts identical")


def cross_target_check(
    name: str,
    fetch: Callable[[CheckContext, str], Optional[str]],
    targets: Sequence[str],
    min_bytes: int = 0,
    min_items: int = 0,
    markers: Sequence[str] = (),
    require_identical: bool = True,
    description: str = ""
) -> Check:
    """Build a check that fetches one artifact per target and compares them.

    Undersized artifacts fail before any content comparison; markers are
    checked next and equality last.

    Args:
        name: Check name
        fetch: Returns the artifact for a target, None when absent
        targets: Clusters to fetch from
        min_bytes: Minimum size of each artifact
        min_items: Minimum PEM certificates in each artifact
        markers: Substrings every artifact must contain
        require_identical: Whether all artifacts must be identical
        description: Human-readable description

    Returns:
        Check depending on all `targets`
    """

    def evaluate(context: CheckContext) -> CheckResult:
        artifacts: Dict[str, str] = {}
        for target in targets:
            context.raise_if_cancelled()
            artifact = fetch(context, target)
            size_result = check_min_size(name, artifact, min_bytes, min_items, target=target)
            if not size_result.passed:
                return size_result.model_copy(update={'message': f"{target}: {size_result.message}"})
            artifacts[target] = artifact

        if markers:
            result = check_required_markers(name, artifacts, markers)
            if not result.passed:
                return result

        if require_identical:
            result = check_identical(name, artifacts)
            if not result.passed:
                return result

        sizes = {t: len(a.encode("utf-8")) for t, a in artifacts.items()}
        return CheckResult.ok(name, f"Consistent across {', '.join(targets)}", data={'sizes': sizes})

    return Check(name=name, evaluate=evaluate, targets=tuple(targets), description=description)
