"""Reconciliation engine: checks, retry scheduling, remediation and the driver."""

from dr_reconciler.engine.cancellation import CancellationToken, install_signal_handlers
from dr_reconciler.engine.models import (
    AttemptRecord,
    CheckOutcome,
    CheckResult,
    ClusterTarget,
    Reachability,
    ReconciliationRun,
    RemediationOutcome,
    RemediationResult,
    SchedulerState,
)
from dr_reconciler.engine.checks import Check, CheckContext, CheckRegistry
from dr_reconciler.engine.composite import (
    check_identical,
    check_min_size,
    check_required_markers,
    cross_target_check,
)
from dr_reconciler.engine.strategies import Strategy, first_success
from dr_reconciler.engine.scheduler import AttemptPolicy, OuterRetryPolicy, RetryScheduler
from dr_reconciler.engine.remediation import RemediationExecutor
from dr_reconciler.engine.driver import (
    ExitCode,
    JobDefinition,
    LoggingReporter,
    ReconciliationDriver,
    Reporter,
    summarize,
)

__all__ = [
    'CancellationToken',
    'install_signal_handlers',
    'AttemptRecord',
    'CheckOutcome',
    'CheckResult',
    'ClusterTarget',
    'Reachability',
    'ReconciliationRun',
    'RemediationOutcome',
    'RemediationResult',
    'SchedulerState',
    'Check',
    'CheckContext',
    'CheckRegistry',
    'check_identical',
    'check_min_size',
    'check_required_markers',
    'cross_target_check',
    'Strategy',
    'first_success',
    'AttemptPolicy',
    'OuterRetryPolicy',
    'RetryScheduler',
    'RemediationExecutor',
    'ExitCode',
    'JobDefinition',
    'LoggingReporter',
    'ReconciliationDriver',
    'Reporter',
    'summarize',
]
