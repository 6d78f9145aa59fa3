"""Typed records produced by the event envelope parser."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from run_test_action.models.job import SubjectKind

type TerminalOutcome = Literal["completed", "failed", "cancelled"]


@dataclass(frozen=True, kw_only=True)
class RunningTask:
    """Entry of the running snapshot sent on connect."""

    subject: SubjectKind
    task_id: str
    name: str | None = None
    parent_task_id: str | None = None
    status: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ConnectionReady:
    """The stream is bound to an organization."""

    org_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class InitialState:
    """Snapshot of every job running for the organization."""

    running_workflows: Sequence[RunningTask] = ()
    running_tests: Sequence[RunningTask] = ()


@dataclass(frozen=True, kw_only=True)
class ItemStarted:
    """A test or workflow started."""

    subject: SubjectKind
    task_id: str
    name: str | None = None
    parent_task_id: str | None = None
    status: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ItemUpdated:
    """Progress of a running test or workflow changed."""

    subject: SubjectKind
    task_id: str
    progress: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class JobCompleted:
    """A test or workflow finished successfully."""

    subject: SubjectKind
    task_id: str
    name: str | None = None
    parent_task_id: str | None = None
    results: Mapping[str, Any] | None = None

    outcome: TerminalOutcome = field(default="completed", init=False)


@dataclass(frozen=True, kw_only=True)
class JobFailed:
    """A test or workflow finished unsuccessfully."""

    subject: SubjectKind
    task_id: str
    name: str | None = None
    parent_task_id: str | None = None
    results: Mapping[str, Any] | None = None

    outcome: TerminalOutcome = field(default="failed", init=False)


@dataclass(frozen=True, kw_only=True)
class JobCancelled:
    """A test or workflow was cancelled."""

    subject: SubjectKind
    task_id: str
    name: str | None = None
    parent_task_id: str | None = None
    results: Mapping[str, Any] | None = None

    outcome: TerminalOutcome = field(default="cancelled", init=False)


@dataclass(frozen=True, kw_only=True)
class Heartbeat:
    """Keep-alive signal."""

    active_tests: int | None = None


@dataclass(frozen=True, kw_only=True)
class ProtocolError:
    """Error pushed by the server on the stream."""

    message: str
    task_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ParseFailure:
    """An event that could not be decoded."""

    event_type: str
    raw: str
    reason: str


type TerminalEvent = JobCompleted | JobFailed | JobCancelled

type StreamEvent = (
    ConnectionReady
    | InitialState
    | ItemStarted
    | ItemUpdated
    | JobCompleted
    | JobFailed
    | JobCancelled
    | Heartbeat
    | ProtocolError
    | ParseFailure
)

TERMINAL_EVENTS = (JobCompleted, JobFailed, JobCancelled)
