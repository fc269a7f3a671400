"""Data models for reconciliation runs."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CheckOutcome(Enum):
    """Result of evaluating a check."""
    PASS = "pass"
    FAIL = "fail"
    INDETERMINATE = "indeterminate"  # Could not be determined, e.g. resource missing


class RemediationOutcome(Enum):
    """Result of a remediation action."""
    APPLIED = "applied"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


class Reachability(Enum):
    """Whether a cluster's API server answered with the resolved credentials."""
    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class SchedulerState(Enum):
    """Lifecycle of a retry scheduler cycle."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"  # A terminal error stopped the cycle early
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self is not SchedulerState.RUNNING


class CheckResult(BaseModel):
    """Outcome of one check evaluation."""

    check: str = Field(..., description="Check name")
    outcome: CheckOutcome = Field(..., description="Evaluation outcome")
    message: str = Field("", description="Diagnostic message")
    data: Dict[str, Any] = Field(default_factory=dict, description="Structured evidence")
    target: Optional[str] = Field(None, description="Cluster the result is about, if any")
    terminal: bool = Field(False, description="Failure that retrying cannot fix")

    @property
    def passed(self) -> bool:
        return self.outcome == CheckOutcome.PASS

    @property
    def gating_failed(self) -> bool:
        """Anything but PASS gates success."""
        return self.outcome != CheckOutcome.PASS

    @classmethod
    def ok(cls, check: str, message: str = "", **kwargs) -> "CheckResult":
        return cls(check=check, outcome=CheckOutcome.PASS, message=message, **kwargs)

    @classmethod
    def fail(cls, check: str, message: str, **kwargs) -> "CheckResult":
        return cls(check=check, outcome=CheckOutcome.FAIL, message=message, **kwargs)

    @classmethod
    def indeterminate(cls, check: str, message: str, **kwargs) -> "CheckResult":
        return cls(check=check, outcome=CheckOutcome.INDETERMINATE, message=message, **kwargs)


class RemediationResult(BaseModel):
    """Outcome of one remediation action."""

    check: str = Field(..., description="Check the remediation belongs to")
    outcome: RemediationOutcome = Field(..., description="Remediation outcome")
    message: str = Field("", description="Diagnostic message")


class ClusterTarget(BaseModel):
    """A cluster a job operates on, with its resolved credential handle."""

    name: str = Field(..., description="Cluster name")
    kubeconfig: Optional[str] = Field(None, description="Path of the kubeconfig; ambient context when None")
    reachability: Reachability = Field(Reachability.UNKNOWN, description="Result of the reachability probe")
    error: Optional[str] = Field(None, description="Why credential resolution failed")
    error_terminal: bool = Field(False, description="Resolution failed in a way retrying cannot fix")
    error_hint: Optional[str] = Field(None, description="Suggested fix for the resolution failure")
    is_hub: bool = Field(False, description="Whether this is the hub cluster")

    @property
    def resolved(self) -> bool:
        """Credentials resolved and the API server answered."""
        return self.error is None and self.reachability == Reachability.REACHABLE


class AttemptRecord(BaseModel):
    """Everything that happened during one scheduler attempt."""

    number: int = Field(..., ge=1, description="Attempt number, 1-based")
    results: List[CheckResult] = Field(default_factory=list)
    remediations: List[RemediationResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_now)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def terminal(self) -> bool:
        return any(r.terminal for r in self.results)


class ReconciliationRun(BaseModel):
    """State of a job run across attempts and outer retry cycles."""

    job: str = Field(..., description="Job name")
    max_attempts: int = Field(..., ge=1)
    interval: float = Field(..., ge=0)
    started_at: datetime = Field(default_factory=_now)
    attempt: int = Field(0, ge=0, description="Current attempt within the cycle")
    state: SchedulerState = Field(SchedulerState.RUNNING)
    attempts: List[AttemptRecord] = Field(default_factory=list)
    cycles: int = Field(0, ge=0, description="Completed scheduler cycles")

    @property
    def current_results(self) -> List[CheckResult]:
        return self.attempts[-1].results if self.attempts else []

    def failing_checks(self) -> List[CheckResult]:
        """Results of the latest attempt that did not pass."""
        return [r for r in self.current_results if r.gating_failed]

    @property
    def all_passed(self) -> bool:
        return bool(self.attempts) and self.attempts[-1].passed
