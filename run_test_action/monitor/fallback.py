"""Authoritative status lookup used when the event stream cannot be trusted."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from pydantic import SecretStr

from run_test_action.models.events import TerminalOutcome
from run_test_action.models.job import Job
from run_test_action.models.result import FallbackAnswer
from run_test_action.models.wire import TestExecutionTask, WorkflowTask

log = logging.getLogger(__name__)

STATUS_TO_OUTCOME: Mapping[str, TerminalOutcome] = {
    "completed": "completed",
    "success": "completed",
    "passed": "completed",
    "failed": "failed",
    "error": "failed",
    "timeout": "failed",
    "cancelled": "cancelled",
    "canceled": "cancelled",
}
PASSED_STATUSES = frozenset(["passed", "success", "completed"])
FAILED_STATUSES = frozenset(["failed", "error", "timeout"])


def terminal_outcome(answer: FallbackAnswer) -> TerminalOutcome | None:
    """Map a fallback status to a terminal outcome, or None if still running."""
    return STATUS_TO_OUTCOME.get(answer.status.lower())


@dataclass(frozen=True, kw_only=True)
class FallbackResolver:
    """Reads the current status of a job from the REST API.

    Never raises: any transport, HTTP or payload problem is logged and
    reported as no answer, leaving the decision to the caller.
    """

    base_url: str
    token: SecretStr = field(repr=False)
    session: aiohttp.ClientSession = field(repr=False)
    timeout: float = 30

    async def resolve(self, job: Job) -> FallbackAnswer | None:
        """Fetch the job status and aggregate counts."""
        if job.subject_kind == "workflow":
            url = f"{self.base_url}/api/v1/workflows/tasks/workflow_task/{job.task_id}"
            params = None
        else:
            url = f"{self.base_url}/api/v1/tests/get_enhanced_test_execution_task"
            params = {"task_id": job.task_id}

        try:
            data = await self._get(url, params)
            if data is None:
                return None
            if job.subject_kind == "workflow":
                answer = workflow_answer(data)
            else:
                answer = single_test_answer(data)
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            log.warning(
                "Failed to fetch %s status for task %s: %s",
                job.subject_kind,
                job.task_id,
                exc,
            )
            return None

        if answer is None:
            log.warning("Status response for task %s carries no status", job.task_id)
            return None

        log.info(
            "Fetched status for task %s: status=%s completed=%d/%d",
            job.task_id,
            answer.status,
            answer.completed_items,
            answer.total_items,
        )
        return answer

    async def _get(
        self, url: str, params: Mapping[str, str] | None
    ) -> Mapping[str, Any] | None:
        headers = {"Authorization": f"Bearer {self.token.get_secret_value()}"}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with self.session.get(
            url, params=params, headers=headers, timeout=timeout
        ) as response:
            if response.status != 200:
                text = await response.text()
                log.warning("Status request failed: %s %s", response.status, text)
                return None
            data = await response.json()

        if not isinstance(data, dict):
            raise ValueError(f"Unexpected status payload: {type(data).__name__}")
        return _unwrap(data)


def _unwrap(data: Mapping[str, Any]) -> Mapping[str, Any]:
    inner = data.get("data")
    return inner if isinstance(inner, dict) else data


def workflow_answer(data: Mapping[str, Any]) -> FallbackAnswer | None:
    """Build an answer from a workflow task payload."""
    task = WorkflowTask.model_validate(data)
    if not task.status:
        return None

    tests = task.tests or []
    passed = sum(1 for t in tests if (t.status or "").lower() in PASSED_STATUSES)
    failed = sum(1 for t in tests if (t.status or "").lower() in FAILED_STATUSES)

    return FallbackAnswer(
        status=task.status,
        total_items=task.total_tests or len(tests),
        completed_items=task.completed_tests or passed + failed,
        passed_items=passed,
        failed_items=failed,
        payload=data,
    )


def single_test_answer(data: Mapping[str, Any]) -> FallbackAnswer | None:
    """Build an answer from a test execution task payload."""
    task = TestExecutionTask.model_validate(data)
    if not task.status:
        return None

    status = task.status.lower()
    finished = status in STATUS_TO_OUTCOME

    return FallbackAnswer(
        status=task.status,
        total_items=1,
        completed_items=int(finished),
        passed_items=int(status in PASSED_STATUSES),
        failed_items=int(status in FAILED_STATUSES),
        payload=data,
    )
