"""Bounded retry scheduler and the explicit outer retry policy."""

from dataclasses import dataclass
from typing import Callable, List, Optional

from dr_reconciler.engine.cancellation import CancellationToken
from dr_reconciler.engine.models import (
    AttemptRecord,
    CheckResult,
    ReconciliationRun,
    RemediationResult,
    SchedulerState,
)
from dr_reconciler.utils.errors import CancelledError
from dr_reconciler.utils.logging import LogContext, get_logger
from dr_reconciler.utils.retry import BackoffPolicy

logger = get_logger(__name__)

EvaluateFn = Callable[[int], List[CheckResult]]
FailureFn = Callable[[int, List[CheckResult]], List[RemediationResult]]


@dataclass(frozen=True)
class AttemptPolicy:
    """Bounded attempt policy of one scheduler cycle."""
    max_attempts: int = 60
    interval: float = 60.0
    backoff: Optional[BackoffPolicy] = None


@dataclass(frozen=True)
class OuterRetryPolicy:
    """Restart exhausted scheduler cycles. Disabled unless explicitly enabled.

    Attributes:
        enabled: Whether an exhausted cycle is restarted
        interval: Pause between cycles in seconds
        max_cycles: Upper bound on cycles; None means no bound
    """
    enabled: bool = False
    interval: float = 60.0
    max_cycles: Optional[int] = None

    def should_restart(self, cycles_completed: int) -> bool:
        if not self.enabled:
            return False
        return self.max_cycles is None or cycles_completed < self.max_cycles


class RetryScheduler:
    """Evaluates a check set until every check passes or attempts run out.

    RUNNING moves to SUCCEEDED when all results of one attempt pass, to
    ABORTED when an attempt produces a terminal failure, to CANCELLED when
    the token fires, and to EXHAUSTED after `max_attempts` failed attempts.
    The scheduler sleeps between attempts only, never after the last one.
    """

    def __init__(
        self,
        max_attempts: int,
        interval: float,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
        cancel: Optional[CancellationToken] = None
    ):
        """Initialize scheduler.

        Args:
            max_attempts: Maximum evaluations per cycle
            interval: Fixed delay between attempts in seconds
            backoff: Backoff policy; overrides `interval` when set
            sleep: Sleep function (injectable for tests); cancellable sleep by default
            cancel: Cancellation token
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.max_attempts = max_attempts
        self.interval = interval
        self.backoff = backoff
        self.cancel = cancel or CancellationToken()
        self._sleep_fn = sleep

    @classmethod
    def from_policy(
        cls,
        policy: AttemptPolicy,
        sleep: Optional[Callable[[float], None]] = None,
        cancel: Optional[CancellationToken] = None
    ) -> 'RetryScheduler':
        return cls(policy.max_attempts, policy.interval, policy.backoff, sleep=sleep, cancel=cancel)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        if self.backoff is not None:
            return self.backoff.delay(attempt - 1)
        return self.interval

    def _sleep(self, seconds: float) -> bool:
        if self._sleep_fn is None:
            return self.cancel.sleep(seconds)
        self._sleep_fn(seconds)
        return not self.cancel.cancelled

    def run(
        self,
        evaluate: EvaluateFn,
        on_failure: Optional[FailureFn] = None,
        run: Optional[ReconciliationRun] = None
    ) -> SchedulerState:
        """Drive one cycle of attempts.

        Args:
            evaluate: Returns the check results for an attempt number
            on_failure: Remediation hook called after a failed, non-final attempt
            run: Run record updated with every attempt

        Returns:
            Final scheduler state
        """
        state = SchedulerState.RUNNING

        for attempt in range(1, self.max_attempts + 1):
            if self.cancel.cancelled:
                state = SchedulerState.CANCELLED
                break

            record = AttemptRecord(number=attempt)
            if run is not None:
                run.attempt = attempt
                run.attempts.append(record)

            with LogContext(logger, attempt=attempt):
                logger.info(f"Attempt {attempt}/{self.max_attempts}")
                try:
                    record.results = list(evaluate(attempt))
                except CancelledError:
                    state = SchedulerState.CANCELLED
                    break

                if record.passed:
                    logger.info(f"All {len(record.results)} checks passed on attempt {attempt}")
                    state = SchedulerState.SUCCEEDED
                    break

                failing = [r.check for r in record.results if r.gating_failed]
                logger.warning(f"Attempt {attempt}/{self.max_attempts} failing: {', '.join(failing)}")

                if record.terminal:
                    logger.error("Terminal failure, aborting without further attempts")
                    state = SchedulerState.ABORTED
                    break

                if attempt == self.max_attempts:
                    state = SchedulerState.EXHAUSTED
                    break

                if on_failure is not None:
                    try:
                        record.remediations = list(on_failure(attempt, record.results))
                    except CancelledError:
                        state = SchedulerState.CANCELLED
                        break

                delay = self.delay_for(attempt)
                logger.info(f"Waiting {delay:.0f}s before attempt {attempt + 1}")
                if not self._sleep(delay):
                    state = SchedulerState.CANCELLED
                    break

        if run is not None:
            run.state = state
        return state
