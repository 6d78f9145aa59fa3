"""Backend client: job submission, monitoring and report links."""

import json
import logging
from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from run_test_action.config import MonitorConfig
from run_test_action.models.job import Job, SubjectKind
from run_test_action.models.result import MonitorResult
from run_test_action.monitor.connection import ConnectionAttempt, stream_url
from run_test_action.monitor.fallback import FallbackResolver
from run_test_action.monitor.policy import ReconnectionPolicy
from run_test_action.monitor.session import MonitorSession

log = logging.getLogger(__name__)

SUBMIT_PATHS: Mapping[SubjectKind, str] = {
    "test": "/api/execute_test_id_async",
    "workflow": "/api/execute_workflow_id_async",
}
REPORT_LINK_PATH = "/api/v1/report/async-run/generate_shareable_report_link"


@dataclass(frozen=True, kw_only=True)
class BackendClient:
    """Client for the execution backend.

    Owns the shared aiohttp session. The monitoring engine gets the session
    and the credential handed to it explicitly.
    """

    config: MonitorConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: MonitorConfig
    ) -> AsyncGenerator["BackendClient", None]:
        """Create client with managed session lifecycle."""
        async with aiohttp.ClientSession() as session:
            yield cls(config=config, session=session)

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key.get_secret_value()}",
            "Content-Type": "application/json",
        }

    @property
    def _request_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.request_timeout)

    async def submit_job(
        self,
        subject_kind: SubjectKind,
        subject_id: str,
        *,
        retries: int = 1,
        build_version_id: str | None = None,
    ) -> Job:
        """Queue a test or workflow execution and return the job to monitor."""
        url = f"{self.config.device_url}{SUBMIT_PATHS[subject_kind]}"
        payload: dict[str, Any] = {f"{subject_kind}_id": subject_id, "retries": retries}
        if subject_kind == "test" and build_version_id:
            payload["build_version_id"] = build_version_id

        log.info(
            "Queueing %s: url=%s, %s_id=%s, retries=%s, build_version_id=%s",
            subject_kind,
            url,
            subject_kind,
            subject_id,
            retries,
            build_version_id,
        )

        async with self.session.post(
            url, json=payload, headers=self._headers, timeout=self._request_timeout
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to queue {subject_kind}: "
                    f"API returned status code {response.status} {text}".strip()
                )
            data = await response.json()

        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not isinstance(task_id, str) or not task_id:
            raise RuntimeError(
                f"Failed to queue {subject_kind}: task_id missing in API response"
            )

        log.info("Queued %s %s as task %s", subject_kind, subject_id, task_id)
        return Job(task_id=task_id, subject_kind=subject_kind, subject_id=subject_id)

    def child_report_url(self, task_id: str) -> str:
        """Dashboard URL of the live report for a task."""
        return f"{self.config.dashboard_url}/tests/report?taskId={task_id}"

    def monitor_session(
        self,
        job: Job,
        timeout: float,
        *,
        policy: ReconnectionPolicy | None = None,
        on_result: Callable[[MonitorResult], None] | None = None,
    ) -> MonitorSession:
        """Build a monitor session for a job, wired to this backend."""
        url = stream_url(self.config.backend_url, job.subject_kind)
        stream_timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self.config.connect_timeout,
            sock_read=self.config.read_timeout,
        )

        def connect(sequence: int) -> ConnectionAttempt:
            return ConnectionAttempt(
                sequence=sequence,
                url=url,
                token=self.config.api_key,
                session=self.session,
                timeout=stream_timeout,
            )

        resolver = FallbackResolver(
            base_url=self.config.backend_url,
            token=self.config.api_key,
            session=self.session,
            timeout=self.config.request_timeout,
        )

        return MonitorSession(
            job=job,
            connect=connect,
            resolver=resolver,
            timeout=timeout,
            policy=policy or ReconnectionPolicy(),
            report_url=self.child_report_url,
            on_result=on_result,
        )

    async def monitor(self, job: Job, timeout: float) -> MonitorResult:
        """Monitor a job until it finishes or the timeout elapses."""
        return await self.monitor_session(job, timeout).run()

    async def generate_report_link(self, report_data: Mapping[str, Any]) -> str | None:
        """Create a shareable report link from a terminal event payload.

        Returns None when the payload does not identify a test run or the
        backend refuses; report links are best effort.
        """
        ids = report_identifiers(report_data)
        if ids is None:
            log.warning("Could not extract test_id or history_id from report data")
            return None

        test_id, history_id = ids
        url = f"{self.config.backend_url}{REPORT_LINK_PATH}"
        payload = {
            "test_id": test_id,
            "history_id": history_id,
            "origin": self.config.dashboard_url,
        }

        try:
            async with self.session.post(
                url, json=payload, headers=self._headers, timeout=self._request_timeout
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    log.warning(
                        "Failed to generate shareable link: %s %s",
                        response.status,
                        text,
                    )
                    return None
                data = await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            log.warning("Failed to generate shareable report link: %s", exc)
            return None

        if not isinstance(data, dict):
            return None
        link = data.get("shareable_link") or data.get("link")
        return link if isinstance(link, str) else None


def report_identifiers(report_data: Mapping[str, Any]) -> tuple[str, str] | None:
    """Extract the (test id, history id) pair a report link is generated for."""
    enhanced_task = report_data.get("enhanced_task")
    if isinstance(enhanced_task, dict) and enhanced_task.get("test_history_id"):
        test_id = report_data.get("test_uid") or enhanced_task.get("test_id")
        history_id = enhanced_task["test_history_id"]
    else:
        metadata = report_data.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = None

        if isinstance(metadata, dict) and metadata.get("test_history_id"):
            test_id = report_data.get("test_uid") or report_data.get("id")
            history_id = metadata["test_history_id"]
        else:
            test_id = report_data.get("test_uid")
            history_id = report_data.get("id") if test_id else None

    if not test_id or not history_id:
        return None
    return str(test_id), str(history_id)
