"""Decode raw stream events into typed records."""

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from run_test_action.models.base import WireModel
from run_test_action.models.events import (
    ConnectionReady,
    Heartbeat,
    InitialState,
    ItemStarted,
    ItemUpdated,
    JobCancelled,
    JobCompleted,
    JobFailed,
    ParseFailure,
    ProtocolError,
    RunningTask,
    StreamEvent,
)
from run_test_action.models.job import SubjectKind
from run_test_action.models.wire import (
    ConnectionReadyPayload,
    ErrorPayload,
    HeartbeatPayload,
    InitialStatePayload,
    TaskInfo,
    TerminalPayload,
    TestEnvelope,
    TestInfo,
    WorkflowEnvelope,
    WorkflowInfo,
)

log = logging.getLogger(__name__)

type TerminalFactory = type[JobCompleted] | type[JobFailed] | type[JobCancelled]


def parse_event(event_type: str, raw: str) -> StreamEvent:
    """Decode one stream event.

    Never raises: malformed payloads and unknown event names are returned as
    ParseFailure. Filtering by task id is left to the caller.
    """
    decoder = DECODERS.get(event_type)
    if decoder is None:
        return ParseFailure(
            event_type=event_type, raw=raw, reason="unrecognized event type"
        )

    try:
        return decoder(raw)
    except ValidationError as exc:
        reason = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: "
            f"{error['msg']}"
            for error in exc.errors()
        )
        return ParseFailure(event_type=event_type, raw=raw, reason=reason)


def _status_fields(task: TaskInfo) -> Mapping[str, Any]:
    return task.model_dump(exclude_none=True)


def _running_test(test: TestInfo) -> RunningTask:
    return RunningTask(
        subject="test",
        task_id=test.task_id,
        name=test.test_name,
        parent_task_id=test.parent_workflow_task_id,
        status=_status_fields(test),
    )


def _running_workflow(workflow: WorkflowInfo) -> RunningTask:
    return RunningTask(
        subject="workflow",
        task_id=workflow.task.task_id,
        name=workflow.workflow_name,
        status=_status_fields(workflow.task),
    )


def _decode_connection_ready(raw: str) -> ConnectionReady:
    payload = ConnectionReadyPayload.model_validate_json(raw)
    return ConnectionReady(org_id=payload.org_id)


def _valid_entries[M: WireModel](
    model: type[M], entries: Sequence[Any]
) -> Iterator[M]:
    for entry in entries:
        try:
            yield model.model_validate(entry)
        except ValidationError as exc:
            log.debug(
                "Skipping malformed %s snapshot entry (%d error(s))",
                model.__name__,
                exc.error_count(),
            )


def _decode_initial_state(raw: str) -> InitialState:
    payload = InitialStatePayload.model_validate_json(raw)
    return InitialState(
        running_workflows=tuple(
            _running_workflow(workflow)
            for workflow in _valid_entries(WorkflowInfo, payload.running_workflows)
        ),
        running_tests=tuple(
            _running_test(test)
            for test in _valid_entries(TestInfo, payload.running_tests)
        ),
    )


def _decode_workflow_started(raw: str) -> ItemStarted:
    workflow = WorkflowEnvelope.model_validate_json(raw).workflow
    return ItemStarted(
        subject="workflow",
        task_id=workflow.task.task_id,
        name=workflow.workflow_name,
        status=_status_fields(workflow.task),
    )


def _decode_workflow_updated(raw: str) -> ItemUpdated:
    workflow = WorkflowEnvelope.model_validate_json(raw).workflow
    return ItemUpdated(
        subject="workflow",
        task_id=workflow.task.task_id,
        progress=_status_fields(workflow.task),
    )


def _decode_test_started(raw: str) -> ItemStarted:
    test = TestEnvelope.model_validate_json(raw).test
    return ItemStarted(
        subject="test",
        task_id=test.task_id,
        name=test.test_name,
        parent_task_id=test.parent_workflow_task_id,
        status=_status_fields(test),
    )


def _decode_test_updated(raw: str) -> ItemUpdated:
    test = TestEnvelope.model_validate_json(raw).test
    return ItemUpdated(
        subject="test", task_id=test.task_id, progress=_status_fields(test)
    )


def _terminal_decoder(
    subject: SubjectKind, factory: TerminalFactory
) -> Callable[[str], StreamEvent]:
    def decode(raw: str) -> StreamEvent:
        payload = TerminalPayload.model_validate_json(raw)
        results = payload.completed_test or payload.failed_test or payload.results
        parent_task_id = payload.parent_workflow_task_id
        if parent_task_id is None and results is not None:
            parent = results.get("parent_workflow_task_id")
            parent_task_id = parent if isinstance(parent, str) else None
        return factory(
            subject=subject,
            task_id=payload.task_id,
            name=payload.test_name if subject == "test" else payload.workflow_name,
            parent_task_id=parent_task_id,
            results=results,
        )

    return decode


def _decode_heartbeat(raw: str) -> Heartbeat:
    if not raw.strip():
        return Heartbeat()
    payload = HeartbeatPayload.model_validate_json(raw)
    return Heartbeat(active_tests=payload.active_tests)


def _decode_error(raw: str) -> ProtocolError:
    payload = ErrorPayload.model_validate_json(raw)
    return ProtocolError(
        message=payload.error or payload.message or "Unknown stream error",
        task_id=payload.task_id,
    )


DECODERS: Mapping[str, Callable[[str], StreamEvent]] = {
    "connection_ready": _decode_connection_ready,
    "initial_state": _decode_initial_state,
    "workflow_started": _decode_workflow_started,
    "workflow_updated": _decode_workflow_updated,
    "workflow_completed": _terminal_decoder("workflow", JobCompleted),
    "workflow_failed": _terminal_decoder("workflow", JobFailed),
    "workflow_cancelled": _terminal_decoder("workflow", JobCancelled),
    "test_started": _decode_test_started,
    "test_updated": _decode_test_updated,
    "test_completed": _terminal_decoder("test", JobCompleted),
    "test_completed_with_data": _terminal_decoder("test", JobCompleted),
    "test_failed": _terminal_decoder("test", JobFailed),
    "test_failed_with_data": _terminal_decoder("test", JobFailed),
    "test_cancelled": _terminal_decoder("test", JobCancelled),
    "test_cancelled_with_data": _terminal_decoder("test", JobCancelled),
    "heartbeat": _decode_heartbeat,
    "error": _decode_error,
}
