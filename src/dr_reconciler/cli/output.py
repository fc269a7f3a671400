"""Rich console rendering of job progress and results."""

from typing import Dict

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config.models import ReconcilerConfig
from ..engine.driver import ExitCode, JobDefinition, Reporter, summarize
from ..engine.models import (
    AttemptRecord,
    CheckOutcome,
    ClusterTarget,
    ReconciliationRun,
    RemediationOutcome,
    SchedulerState,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)
console = Console()

OUTCOME_STYLES = {
    CheckOutcome.PASS: "[green]✓ pass[/green]",
    CheckOutcome.FAIL: "[red]✗ fail[/red]",
    CheckOutcome.INDETERMINATE: "[yellow]? indeterminate[/yellow]",
}

REMEDIATION_STYLES = {
    RemediationOutcome.APPLIED: "[green]applied[/green]",
    RemediationOutcome.NOT_APPLICABLE: "[dim]not applicable[/dim]",
    RemediationOutcome.FAILED: "[red]failed[/red]",
}


class RichReporter(Reporter):
    """Prints attempt tables and the final summary to the console."""

    def __init__(self, out: Console = None, verbose: bool = False):
        self.console = out or console
        self.verbose = verbose

    def run_started(self, job: JobDefinition, run: ReconciliationRun) -> None:
        self.console.print(Panel.fit(
            f"[bold]{job.name}[/bold]\n"
            f"{job.description}\n"
            f"Checks: {len(job.checks)}\n"
            f"Attempts: {run.max_attempts} every {run.interval:.0f}s",
            title="Reconciliation",
            border_style="cyan"
        ))

    def targets_resolved(self, targets: Dict[str, ClusterTarget]) -> None:
        table = Table(title="Targets", show_header=True, header_style="bold cyan")
        table.add_column("Cluster", style="cyan")
        table.add_column("Role", style="magenta")
        table.add_column("Status")

        for target in targets.values():
            status = "[green]resolved[/green]" if target.resolved else f"[red]{target.error or target.reachability.value}[/red]"
            table.add_row(target.name, "hub" if target.is_hub else "managed", status)

        self.console.print(table)

    def attempt_evaluated(self, run: ReconciliationRun, record: AttemptRecord) -> None:
        passed = sum(1 for r in record.results if r.passed)
        total = len(record.results)
        colour = "green" if passed == total else "yellow"
        self.console.print(
            f"[bold]Attempt {record.number}/{run.max_attempts}[/bold]: "
            f"[{colour}]{passed}/{total} checks passed[/{colour}]"
        )

        if self.verbose or passed != total:
            self.console.print(results_table(record))

    def summary(self, job: JobDefinition, run: ReconciliationRun, exit_code: ExitCode) -> None:
        lines = summarize(job, run)
        success = exit_code == ExitCode.OK and run.state == SchedulerState.SUCCEEDED
        self.console.print()
        self.console.print(Panel.fit(
            "\n".join(lines),
            title="Reconciliation Complete" if success else "Reconciliation Failed",
            border_style="green" if success else "red"
        ))


def results_table(record: AttemptRecord) -> Table:
    """Table of the check results (and remediations) of one attempt."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Check", style="cyan")
    table.add_column("Target", style="magenta")
    table.add_column("Outcome")
    table.add_column("Message", style="white")

    for result in record.results:
        table.add_row(result.check, result.target or "-", OUTCOME_STYLES[result.outcome], result.message)

    for remediation in record.remediations:
        table.add_row(
            f"↳ {remediation.check}", "-", REMEDIATION_STYLES[remediation.outcome], remediation.message
        )
    return table


def jobs_table(configuration: ReconcilerConfig, jobs) -> Table:
    """Registered jobs with their effective attempt policies."""
    table = Table(title="Jobs", show_header=True, header_style="bold cyan")
    table.add_column("Job", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Interval", justify="right")
    table.add_column("Retry forever", style="yellow")
    table.add_column("Description", style="white")

    for name, builder in jobs.items():
        policy = configuration.policy_for(name)
        definition = builder(configuration)
        table.add_row(
            name,
            str(policy.max_attempts),
            "backoff" if policy.backoff else f"{policy.interval_seconds:.0f}s",
            "yes" if policy.retry_forever else "no",
            definition.description,
        )
    return table
