"""Tests for CLI module."""

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, Mock, patch

import pytest
from pydantic import SecretStr

from run_test_action.cli import (
    first_child_error,
    format_output,
    log_result_summary,
    main,
    run,
)
from run_test_action.config import MonitorConfig
from run_test_action.models.job import Job
from run_test_action.models.result import ChildCounts, MonitorResult
from run_test_action.testing.factories import JobFactory, MonitorResultFactory
from run_test_action.testing.payloads import completed_test_data

TEST_JOB = Job(task_id="t-1", subject_kind="test", subject_id="test-1")
WORKFLOW_JOB = Job(task_id="wf-1", subject_kind="workflow", subject_id="workflow-1")


@pytest.fixture
def config() -> MonitorConfig:
    """Create test configuration."""
    return MonitorConfig(api_key=SecretStr("test-token"))


def patch_client(client: Mock) -> Any:
    """Patch BackendClient.from_config to yield the given client."""

    @asynccontextmanager
    async def from_config(config: MonitorConfig) -> AsyncGenerator[Mock, None]:
        yield client

    return patch("run_test_action.cli.BackendClient.from_config", from_config)


def test_log_result_summary_success(caplog: pytest.LogCaptureFixture) -> None:
    """Logs success results with checkmark symbol."""
    result = MonitorResultFactory.build(task_id="t-1", duration=10.5)

    with caplog.at_level(logging.INFO):
        log_result_summary(
            logging.getLogger(), TEST_JOB, result, "https://app.test/share/x"
        )

    assert "Test Result Summary:" in caplog.text
    assert "✅ Test test-1: completed (10.50s)" in caplog.text
    assert "Task ID: t-1" in caplog.text
    assert "Report: https://app.test/share/x" in caplog.text


def test_log_result_summary_workflow_counts(caplog: pytest.LogCaptureFixture) -> None:
    """Logs child test counts for workflows."""
    result = MonitorResultFactory.build(
        task_id="wf-1",
        status="failed",
        duration=61.0,
        reconnects=2,
        counts=ChildCounts(passed=3, failed=1, total=4),
    )

    with caplog.at_level(logging.INFO):
        log_result_summary(logging.getLogger(), WORKFLOW_JOB, result)

    assert "❌ Workflow workflow-1: failed (61.00s)" in caplog.text
    assert "Tests: 3 passed, 1 failed, 4 total" in caplog.text
    assert "Reconnects: 2" in caplog.text
    assert "Inspect the failure report" in caplog.text


def test_log_result_summary_timeout(caplog: pytest.LogCaptureFixture) -> None:
    """Logs timeout results with timer symbol."""
    result = MonitorResultFactory.build(
        task_id="t-1",
        status="unknown",
        reason="timeout",
        duration=600.0,
        message="Timeout of 600s reached while waiting for task to finish",
    )

    with caplog.at_level(logging.INFO):
        log_result_summary(logging.getLogger(), TEST_JOB, result)

    assert "⏱️ Test test-1: unknown (600.00s)" in caplog.text
    assert "Re-run to try again." in caplog.text


def test_log_result_summary_with_message(caplog: pytest.LogCaptureFixture) -> None:
    """Logs the message of protocol errors."""
    result = MonitorResultFactory.build(
        status="error", reason="protocol_error", duration=0.0, message="Not allowed"
    )

    with caplog.at_level(logging.INFO):
        log_result_summary(logging.getLogger(), TEST_JOB, result)

    assert "❗ Test test-1: error (0.00s)" in caplog.text
    assert "Message: Not allowed" in caplog.text


def test_format_output_test() -> None:
    """Formats test results with report data details."""
    report = completed_test_data(status="failed", error_message="Button not found")
    result = MonitorResultFactory.build(
        task_id="t-1", status="failed", duration=12.0, payload=report
    )

    output = format_output(TEST_JOB, result, "https://app.test/share/x")

    assert output == {
        "task_id": "t-1",
        "subject": "test",
        "subject_id": "test-1",
        "status": "failed",
        "success": False,
        "reason": "event",
        "timed_out": False,
        "execution_time": "00:01:35",
        "reconnects": 0,
        "report_link": "https://app.test/share/x",
        "message": None,
        "platform": "android",
        "total_steps": 5,
        "completed_steps": 5,
        "error_message": "Button not found",
    }


def test_format_output_workflow() -> None:
    """Formats workflow results with child counts."""
    result = MonitorResultFactory.build(
        task_id="wf-1",
        duration=3725.0,
        counts=ChildCounts(passed=2, failed=1, pending=1, total=4),
    )

    output = format_output(WORKFLOW_JOB, result)

    assert output["success"] is True
    assert output["execution_time"] == "01:02:05"
    assert output["total_tests"] == 4
    assert output["completed_tests"] == 3
    assert output["passed_tests"] == 2
    assert output["failed_tests"] == 1
    assert "total_steps" not in output
    assert "error_message" not in output


def test_format_output_failed_workflow_reports_child_error() -> None:
    """A failed workflow reports the error of its first failed test."""
    result = MonitorResultFactory.build(
        task_id="wf-1",
        status="failed",
        duration=5.0,
        counts=ChildCounts(passed=1, failed=2, total=3),
        payload={
            "tests": [
                {"task_id": "a", "status": "passed"},
                {"task_id": "b", "status": "FAILED", "error": "Button not found"},
                {"task_id": "c", "status": "timeout", "error": "Step timed out"},
            ]
        },
    )

    output = format_output(WORKFLOW_JOB, result)

    assert output["error_message"] == "Button not found"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"tests": "not a list"},
        {"tests": [{"status": "failed"}]},
        {"tests": [{"status": "passed", "error": "ignored"}, "not a test"]},
    ],
)
def test_first_child_error_missing(payload: dict[str, Any]) -> None:
    """No error is reported when no failed test carries one."""
    assert first_child_error(payload) is None


def test_format_output_timeout() -> None:
    """Marks timed out results."""
    job = JobFactory.build(subject_kind="test")
    result = MonitorResultFactory.build(status="unknown", reason="timeout")

    output = format_output(job, result)

    assert output["timed_out"] is True
    assert output["success"] is False
    assert output["task_id"] == job.task_id


async def test_run_success(
    config: MonitorConfig, capsys: pytest.CaptureFixture[str]
) -> None:
    """Returns exit code 0 when the job completes."""
    result = MonitorResultFactory.build(task_id="wf-1", duration=30.0)
    client = Mock()
    client.submit_job = AsyncMock(return_value=WORKFLOW_JOB)
    client.monitor = AsyncMock(return_value=result)
    client.generate_report_link = AsyncMock()

    with patch_client(client):
        exit_code = await run(config, "workflow", "workflow-1", timeout=60)

    assert exit_code == 0
    client.submit_job.assert_awaited_once_with(
        "workflow", "workflow-1", retries=1, build_version_id=None
    )
    client.monitor.assert_awaited_once_with(WORKFLOW_JOB, 60)
    client.generate_report_link.assert_not_awaited()
    output = json.loads(capsys.readouterr().out)
    assert output["status"] == "completed"
    assert output["task_id"] == "wf-1"


async def test_run_generates_report_link_for_tests(
    config: MonitorConfig, capsys: pytest.CaptureFixture[str]
) -> None:
    """Generates a shareable link from the terminal payload of a test."""
    report = completed_test_data()
    result = MonitorResultFactory.build(task_id="t-1", payload=report)
    client = Mock()
    client.submit_job = AsyncMock(return_value=TEST_JOB)
    client.monitor = AsyncMock(return_value=result)
    client.generate_report_link = AsyncMock(return_value="https://app.test/share/x")

    with patch_client(client):
        exit_code = await run(
            config, "test", "test-1", timeout=60, build_version_id="build-9"
        )

    assert exit_code == 0
    client.generate_report_link.assert_awaited_once_with(report)
    output = json.loads(capsys.readouterr().out)
    assert output["report_link"] == "https://app.test/share/x"


async def test_run_failure(
    config: MonitorConfig, capsys: pytest.CaptureFixture[str]
) -> None:
    """Returns exit code 1 for anything but completion."""
    result: MonitorResult = MonitorResultFactory.build(
        status="unknown", reason="fallback_unavailable"
    )
    client = Mock()
    client.submit_job = AsyncMock(return_value=WORKFLOW_JOB)
    client.monitor = AsyncMock(return_value=result)

    with patch_client(client):
        exit_code = await run(config, "workflow", "workflow-1", timeout=60)

    assert exit_code == 1
    assert json.loads(capsys.readouterr().out)["success"] is False


async def test_run_submission_error(
    config: MonitorConfig, capsys: pytest.CaptureFixture[str]
) -> None:
    """Prints an error document when the job cannot be queued."""
    client = Mock()
    client.submit_job = AsyncMock(side_effect=RuntimeError("Failed to queue test"))
    client.monitor = AsyncMock()

    with patch_client(client):
        exit_code = await run(config, "test", "test-1", timeout=60)

    assert exit_code == 1
    client.monitor.assert_not_awaited()
    assert json.loads(capsys.readouterr().out) == {
        "status": "error",
        "success": False,
        "message": "Failed to queue test",
    }


def test_main_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Exits with a usage error when no API key is configured."""
    monkeypatch.delenv("REVYL_API_KEY", raising=False)
    monkeypatch.setattr("sys.argv", ["run-test-action", "--test-id", "test-1"])

    with pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == 2


def test_main_runs_workflow(monkeypatch: pytest.MonkeyPatch) -> None:
    """Passes parsed arguments and configuration to run."""
    monkeypatch.setenv("REVYL_API_KEY", "secret")
    monkeypatch.setattr(
        "sys.argv",
        [
            "run-test-action",
            "--workflow-id",
            "workflow-1",
            "--timeout",
            "120",
            "--backend-url",
            "http://backend.test/",
        ],
    )
    run_mock = AsyncMock(return_value=0)

    with patch("run_test_action.cli.run", run_mock), pytest.raises(SystemExit) as exc:
        main()

    assert exc.value.code == 0
    kwargs = run_mock.await_args.kwargs
    assert kwargs["subject_kind"] == "workflow"
    assert kwargs["subject_id"] == "workflow-1"
    assert kwargs["timeout"] == 120
    assert kwargs["config"].backend_url == "http://backend.test"
    assert kwargs["config"].api_key.get_secret_value() == "secret"
