"""Pydantic models for raw backend payloads."""

from collections.abc import Sequence
from typing import Any

from pydantic import Field

from run_test_action.models.base import WireModel


class TaskInfo(WireModel):
    """Task status block shared by tests and workflows.

    Progress fields (phase, current step, counters) vary by subject and are
    kept as extra fields.
    """

    task_id: str
    status: str | None = None


class TestInfo(TaskInfo):
    """A running test as described on the stream."""

    __test__ = False

    test_name: str | None = None
    parent_workflow_task_id: str | None = None


class WorkflowInfo(WireModel):
    """A running workflow as described on the stream."""

    workflow_name: str | None = None
    task: TaskInfo


class ConnectionReadyPayload(WireModel):
    """Payload of ``connection_ready``."""

    org_id: str | None = None


class InitialStatePayload(WireModel):
    """Payload of ``initial_state``: snapshot of everything currently running.

    The snapshot covers every job of the organization, so entries are kept raw
    and validated one by one; a malformed entry only drops that entry.
    """

    running_workflows: Sequence[Any] = Field(default_factory=list)
    running_tests: Sequence[Any] = Field(default_factory=list)


class WorkflowEnvelope(WireModel):
    """Payload of ``workflow_started`` and ``workflow_updated``."""

    workflow: WorkflowInfo


class TestEnvelope(WireModel):
    """Payload of ``test_started`` and ``test_updated``."""

    __test__ = False

    test: TestInfo


class TerminalPayload(WireModel):
    """Payload of every completed, failed or cancelled event."""

    task_id: str
    test_name: str | None = None
    workflow_name: str | None = None
    parent_workflow_task_id: str | None = None
    completed_test: dict[str, Any] | None = None
    failed_test: dict[str, Any] | None = None
    results: dict[str, Any] | None = None


class HeartbeatPayload(WireModel):
    """Payload of ``heartbeat``."""

    active_tests: int | None = None


class ErrorPayload(WireModel):
    """Payload of a server-pushed ``error`` event."""

    error: str | None = None
    message: str | None = None
    task_id: str | None = None


class TaskTestEntry(WireModel):
    """One child test listed on a workflow task."""

    task_id: str | None = None
    test_name: str | None = None
    status: str | None = None
    error: str | None = None


class WorkflowTask(WireModel):
    """Workflow task returned by the status endpoint."""

    status: str | None = None
    success: bool | None = None
    workflow_name: str | None = None
    total_tests: int | None = None
    completed_tests: int | None = None
    tests: Sequence[TaskTestEntry] | None = None


class TestExecutionTask(WireModel):
    """Test execution task returned by the status endpoint."""

    __test__ = False

    status: str | None = None
    test_name: str | None = None
    error_message: str | None = None
