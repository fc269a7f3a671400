"""Remediation executor: applies corrective actions for failing checks."""

from typing import Dict, List, Sequence

from dr_reconciler.engine.checks import Check, CheckContext
from dr_reconciler.engine.models import CheckResult, RemediationOutcome, RemediationResult
from dr_reconciler.utils.errors import CancelledError, ReconcileError
from dr_reconciler.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class RemediationExecutor:
    """Runs remediations explicitly, never from inside a check.

    A failed remediation is logged and reported as FAILED; it never aborts
    the run, since the next attempt re-evaluates the checks anyway.
    """

    def __init__(self, dry_run: bool = False):
        """Initialize executor.

        Args:
            dry_run: Log what would be remediated without doing it
        """
        self.dry_run = dry_run

    def remediate(self, check: Check, context: CheckContext, result: CheckResult) -> RemediationResult:
        """Remediate one failing check.

        Args:
            check: Check whose remediation to run
            context: Evaluation context
            result: Latest result of the check

        Returns:
            RemediationResult; NOT_APPLICABLE when there is nothing to do
        """
        if check.remediate is None:
            return RemediationResult(
                check=check.name,
                outcome=RemediationOutcome.NOT_APPLICABLE,
                message="No remediation defined",
            )
        if result.passed:
            return RemediationResult(
                check=check.name,
                outcome=RemediationOutcome.NOT_APPLICABLE,
                message="Check passed",
            )
        if self.dry_run:
            logger.info(f"[dry-run] Would remediate {check.name}: {result.message}")
            return RemediationResult(
                check=check.name,
                outcome=RemediationOutcome.NOT_APPLICABLE,
                message="Dry run",
            )

        context.raise_if_cancelled()
        with LogContext(logger, check=check.name, operation='remediate'):
            logger.info(f"Remediating {check.name}")
            try:
                outcome = check.remediate(context)
            except CancelledError:
                raise
            except ReconcileError as e:
                logger.error(f"Remediation for {check.name} failed: {e.message}")
                return RemediationResult(check=check.name, outcome=RemediationOutcome.FAILED, message=e.message)
            except Exception as e:
                logger.error(f"Remediation for {check.name} failed: {type(e).__name__}: {e}", exc_info=True)
                return RemediationResult(
                    check=check.name,
                    outcome=RemediationOutcome.FAILED,
                    message=f"{type(e).__name__}: {e}",
                )

        if not isinstance(outcome, RemediationResult):
            outcome = RemediationResult(
                check=check.name,
                outcome=RemediationOutcome.APPLIED,
                message=str(outcome) if outcome else "",
            )
        elif outcome.check != check.name:
            outcome = outcome.model_copy(update={'check': check.name})

        if outcome.outcome == RemediationOutcome.FAILED:
            logger.error(f"Remediation for {check.name} failed: {outcome.message}")
        else:
            logger.info(f"Remediation for {check.name}: {outcome.outcome.value} {outcome.message}".rstrip())
        return outcome

    def remediate_failures(
        self,
        checks: Sequence[Check],
        results: Sequence[CheckResult],
        context: CheckContext
    ) -> List[RemediationResult]:
        """Remediate every failing check in order.

        Checks sharing one remediation function get it executed once per
        attempt; the others report the shared outcome.

        Args:
            checks: Checks in evaluation order
            results: Results of the attempt
            context: Evaluation context

        Returns:
            One RemediationResult per failing check that defines a remediation
        """
        by_name = {r.check: r for r in results}
        done: Dict[int, RemediationResult] = {}
        remediations = []

        for check in checks:
            result = by_name.get(check.name)
            if result is None or result.passed or check.remediate is None:
                continue

            key = id(check.remediate)
            if key in done:
                shared = done[key]
                remediations.append(RemediationResult(
                    check=check.name,
                    outcome=shared.outcome,
                    message=f"Shared with {shared.check}",
                ))
                continue

            outcome = self.remediate(check, context, result)
            done[key] = outcome
            remediations.append(outcome)

        return remediations
