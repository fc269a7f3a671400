"""Reconciliation driver: targets, attempts, remediation and exit status."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Sequence

from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.checks import Check, CheckContext, CheckRegistry, ClientFactory, CloudFactory
from dr_reconciler.engine.models import (
    AttemptRecord,
    CheckResult,
    ClusterTarget,
    ReconciliationRun,
    RemediationOutcome,
    RemediationResult,
    SchedulerState,
)
from dr_reconciler.engine.remediation import RemediationExecutor
from dr_reconciler.engine.scheduler import AttemptPolicy, OuterRetryPolicy, RetryScheduler
from dr_reconciler.utils.errors import CancelledError, ReconcileError
from dr_reconciler.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class ExitCode(IntEnum):
    """Process exit status consumed by the calling automation."""
    OK = 0
    FAILED = 1


@dataclass
class JobDefinition:
    """Everything the driver needs to reconcile one job."""
    name: str
    description: str
    checks: List[Check]
    targets: List[str]
    policy: AttemptPolicy = field(default_factory=AttemptPolicy)
    outer_policy: OuterRetryPolicy = field(default_factory=OuterRetryPolicy)
    terminal_action: Optional[Callable[[CheckContext], Optional[RemediationResult]]] = None
    failure_hints: List[str] = field(default_factory=list)


class Reporter:
    """Progress hooks. The base implementation does nothing."""

    def run_started(self, job: JobDefinition, run: ReconciliationRun) -> None:
        pass

    def targets_resolved(self, targets: Dict[str, ClusterTarget]) -> None:
        pass

    def attempt_evaluated(self, run: ReconciliationRun, record: AttemptRecord) -> None:
        pass

    def summary(self, job: JobDefinition, run: ReconciliationRun, exit_code: ExitCode) -> None:
        pass


class LoggingReporter(Reporter):
    """Reports progress and the final summary through logging."""

    def targets_resolved(self, targets: Dict[str, ClusterTarget]) -> None:
        for target in targets.values():
            if target.resolved:
                logger.info(f"Target {target.name} resolved")
            else:
                logger.warning(f"Target {target.name} unresolved: {target.error or target.reachability.value}")

    def summary(self, job: JobDefinition, run: ReconciliationRun, exit_code: ExitCode) -> None:
        for line in summarize(job, run):
            if exit_code == ExitCode.OK:
                logger.info(line)
            else:
                logger.error(line)


def summarize(job: JobDefinition, run: ReconciliationRun) -> List[str]:
    """Human-readable final summary naming every still-failing check."""
    lines = [f"Job {job.name}: {run.state.value} after {run.attempt} attempt(s)"]
    failing = run.failing_checks()
    if run.state != SchedulerState.SUCCEEDED and failing:
        lines.append("Failing checks:")
        for result in failing:
            where = f" [{result.target}]" if result.target else ""
            lines.append(f"  - {result.check}{where}: {result.message}")
        if job.failure_hints:
            lines.append("Hints:")
            lines.extend(f"  - {hint}" for hint in job.failure_hints)
    return lines


class ReconciliationDriver:
    """Runs a job to completion and returns a process exit code."""

    def __init__(
        self,
        job: JobDefinition,
        resolver: Any,
        clients: ClientFactory,
        config: Any = None,
        aws: Optional[CloudFactory] = None,
        sleep: Optional[Callable[[float], None]] = None,
        cancel: Optional[CancellationToken] = None,
        dry_run: bool = False,
        check_only: bool = False,
        reporter: Optional[Reporter] = None
    ):
        """Initialize driver.

        Args:
            job: Job to run
            resolver: Target resolver providing resolve(names) and refresh(target)
            clients: Factory building a cluster client for a resolved target
            config: Configuration handed to checks
            aws: Factory building a security group tagger per cluster
            sleep: Sleep function (injectable for tests)
            cancel: Cancellation token
            dry_run: Evaluate and report, but never mutate
            check_only: Evaluate only; no remediation and no terminal action
            reporter: Progress reporter; logging by default
        """
        self.job = job
        self.resolver = resolver
        self.clients = clients
        self.config = config
        self.aws = aws
        self.sleep = sleep
        self.cancel = cancel or CancellationToken()
        self.dry_run = dry_run
        self.check_only = check_only
        self.reporter = reporter or LoggingReporter()
        self.registry = CheckRegistry(job.checks)
        self.executor = RemediationExecutor(dry_run=dry_run)
        self.targets: Dict[str, ClusterTarget] = {}
        self.run_record: Optional[ReconciliationRun] = None
        self._context: Optional[CheckContext] = None

    def _build_context(self) -> CheckContext:
        return CheckContext(
            targets=self.targets,
            clients=self.clients,
            config=self.config,
            cancel=self.cancel,
            dry_run=self.dry_run,
            aws=self.aws,
        )

    def _refresh_targets(self) -> None:
        for name, target in list(self.targets.items()):
            if not target.resolved:
                logger.info(f"Refreshing credentials for {name}")
                self.targets[name] = self.resolver.refresh(target)

    def _evaluate(self, attempt: int) -> List[CheckResult]:
        if attempt > 1:
            self._refresh_targets()
        self._context = self._build_context()
        results = self.registry.evaluate_all(self._context)
        record = self.run_record.attempts[-1]
        record.results = results
        self.reporter.attempt_evaluated(self.run_record, record)
        return results

    def _remediate(self, attempt: int, results: Sequence[CheckResult]) -> List[RemediationResult]:
        return self.executor.remediate_failures(list(self.registry), results, self._context)

    def _run_terminal_action(self) -> bool:
        action = self.job.terminal_action
        if action is None:
            return True
        if self.check_only:
            logger.info("Check-only mode: skipping terminal action")
            return True
        if self.dry_run:
            logger.info(f"[dry-run] Would run terminal action of {self.job.name}")
            return True

        with LogContext(logger, operation='terminal_action'):
            try:
                result = action(self._context or self._build_context())
            except CancelledError:
                raise
            except ReconcileError as e:
                logger.error(f"Terminal action failed: {e.message}")
                return False
            except Exception as e:
                logger.error(f"Terminal action failed: {type(e).__name__}: {e}", exc_info=True)
                return False

        if isinstance(result, RemediationResult) and result.outcome == RemediationOutcome.FAILED:
            logger.error(f"Terminal action failed: {result.message}")
            return False
        logger.info("Terminal action completed")
        return True

    def _finish(self, exit_code: ExitCode) -> int:
        self.reporter.summary(self.job, self.run_record, exit_code)
        return int(exit_code)

    def run(self) -> int:
        """Run the job.

        Returns:
            0 when all checks passed (and the terminal action succeeded), else 1
        """
        policy = self.job.policy
        run = ReconciliationRun(job=self.job.name, max_attempts=policy.max_attempts, interval=policy.interval)
        self.run_record = run

        with LogContext(logger, job=self.job.name):
            self.reporter.run_started(self.job, run)
            logger.info(
                f"Starting {self.job.name}: {len(self.registry)} checks, "
                f"{policy.max_attempts} attempts every {policy.interval:.0f}s"
            )

            try:
                self.targets = dict(self.resolver.resolve(self.job.targets))
            except CancelledError:
                run.state = SchedulerState.CANCELLED
                return self._finish(ExitCode.FAILED)
            self.reporter.targets_resolved(self.targets)

            on_failure = None if self.check_only else self._remediate

            while True:
                scheduler = RetryScheduler.from_policy(policy, sleep=self.sleep, cancel=self.cancel)
                try:
                    state = scheduler.run(self._evaluate, on_failure, run)
                except CancelledError:
                    state = run.state = SchedulerState.CANCELLED
                run.cycles += 1

                if state == SchedulerState.SUCCEEDED:
                    try:
                        ok = self._run_terminal_action()
                    except CancelledError:
                        run.state = SchedulerState.CANCELLED
                        return self._finish(ExitCode.FAILED)
                    return self._finish(ExitCode.OK if ok else ExitCode.FAILED)

                if state == SchedulerState.EXHAUSTED and self.job.outer_policy.should_restart(run.cycles):
                    self.reporter.summary(self.job, run, ExitCode.FAILED)
                    interval = self.job.outer_policy.interval
                    logger.warning(f"Cycle {run.cycles} exhausted, restarting in {interval:.0f}s")
                    if not self._outer_sleep(interval):
                        run.state = SchedulerState.CANCELLED
                        return self._finish(ExitCode.FAILED)
                    run.attempts = []
                    run.attempt = 0
                    run.state = SchedulerState.RUNNING
                    continue

                return self._finish(ExitCode.FAILED)

    def _outer_sleep(self, seconds: float) -> bool:
        if self.sleep is None:
            return self.cancel.sleep(seconds)
        self.sleep(seconds)
        return not self.cancel.cancelled
