"""Models for monitoring results."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

type MonitorStatus = Literal["completed", "failed", "cancelled", "unknown", "error"]
type ResolutionReason = Literal[
    "event", "fallback", "timeout", "fallback_unavailable", "protocol_error"
]
type ChildOutcome = Literal["pending", "passed", "failed", "cancelled"]


@dataclass(frozen=True, kw_only=True)
class ChildCounts:
    """Snapshot of child item outcomes for a workflow."""

    passed: int = 0
    failed: int = 0
    cancelled: int = 0
    pending: int = 0
    total: int = 0

    @property
    def completed(self) -> int:
        """Number of child items that reached a terminal outcome."""
        return self.total - self.pending


@dataclass(frozen=True, kw_only=True)
class FallbackAnswer:
    """Authoritative point-in-time status of a job."""

    status: str
    total_items: int = 0
    completed_items: int = 0
    passed_items: int = 0
    failed_items: int = 0
    payload: Mapping[str, Any] | None = None

    def counts(self) -> ChildCounts:
        """Express the aggregate counts as a child counts snapshot."""
        return ChildCounts(
            passed=self.passed_items,
            failed=self.failed_items,
            cancelled=max(
                0, self.completed_items - self.passed_items - self.failed_items
            ),
            pending=max(0, self.total_items - self.completed_items),
            total=self.total_items,
        )


@dataclass(frozen=True, kw_only=True)
class MonitorResult:
    """Terminal outcome of one monitoring session.

    ``status`` is what callers branch on. ``reason`` tells how the session got
    there, so a timeout can be reported differently from an explicit failure.
    """

    task_id: str
    status: MonitorStatus
    reason: ResolutionReason
    duration: float
    reconnects: int = 0
    counts: ChildCounts | None = None
    message: str | None = None
    payload: Mapping[str, Any] | None = None

    @property
    def timed_out(self) -> bool:
        """Whether the session ran out of time before learning the outcome."""
        return self.reason == "timeout"

    @property
    def success(self) -> bool:
        """Whether the job completed successfully."""
        return self.status == "completed"
