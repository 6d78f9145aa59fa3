"""CLI entry point for running a test or workflow and monitoring it."""

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Mapping
from typing import Any

import aiohttp

from run_test_action.client import BackendClient
from run_test_action.config import MonitorConfig
from run_test_action.models.job import Job, SubjectKind
from run_test_action.models.result import MonitorResult
from run_test_action.monitor.fallback import FAILED_STATUSES
from run_test_action.progress import format_duration

API_KEY_ENV = "REVYL_API_KEY"

STATUS_SYMBOLS = {
    "completed": "✅",
    "failed": "❌",
    "cancelled": "🚫",
    "unknown": "⏱️",
    "error": "❗",
}


def log_result_summary(
    log: logging.Logger,
    job: Job,
    result: MonitorResult,
    report_link: str | None = None,
) -> None:
    """Log a formatted summary of the monitoring result."""
    log.info("=" * 80)
    log.info("%s Result Summary:", job.label)
    log.info("=" * 80)

    symbol = STATUS_SYMBOLS.get(result.status, "?")
    log.info(
        "%s %s %s: %s (%.2fs)",
        symbol,
        job.label,
        job.subject_id,
        result.status,
        result.duration,
    )
    log.info("  Task ID: %s", job.task_id)
    if result.counts is not None:
        log.info(
            "  Tests: %d passed, %d failed, %d total",
            result.counts.passed,
            result.counts.failed,
            result.counts.total,
        )
    if result.reconnects:
        log.info("  Reconnects: %d", result.reconnects)
    if report_link:
        log.info("  Report: %s", report_link)
    if result.timed_out:
        log.info("  Message: %s. Re-run to try again.", result.message)
    elif result.status == "failed":
        log.info("  Message: Inspect the failure report for details.")
    elif result.message:
        log.info("  Message: %s", result.message)


def format_output(
    job: Job, result: MonitorResult, report_link: str | None = None
) -> dict[str, Any]:
    """Format the monitoring result for JSON output."""
    payload: Mapping[str, Any] = result.payload or {}
    enhanced_task = payload.get("enhanced_task")
    if not isinstance(enhanced_task, dict):
        enhanced_task = {}

    output: dict[str, Any] = {
        "task_id": job.task_id,
        "subject": job.subject_kind,
        "subject_id": job.subject_id,
        "status": result.status,
        "success": result.success,
        "reason": result.reason,
        "timed_out": result.timed_out,
        "execution_time": format_duration(payload.get("duration") or result.duration),
        "reconnects": result.reconnects,
        "report_link": report_link,
        "message": result.message,
    }

    if result.counts is not None:
        output["total_tests"] = result.counts.total
        output["completed_tests"] = result.counts.completed
        output["passed_tests"] = result.counts.passed
        output["failed_tests"] = result.counts.failed

    if platform := enhanced_task.get("platform"):
        output["platform"] = platform
    if job.subject_kind == "test":
        if total_steps := enhanced_task.get("total_steps"):
            output["total_steps"] = total_steps
        if isinstance(step_index := enhanced_task.get("current_step_index"), int):
            output["completed_steps"] = step_index + 1
    if result.status == "failed":
        error_message = enhanced_task.get("error_message")
        if not error_message and job.subject_kind == "workflow":
            error_message = first_child_error(payload)
        if error_message:
            output["error_message"] = error_message

    return output


def first_child_error(payload: Mapping[str, Any]) -> str | None:
    """Error of the first failed child test listed in a workflow payload."""
    tests = payload.get("tests")
    if not isinstance(tests, list):
        return None

    for test in tests:
        if not isinstance(test, dict):
            continue
        status = str(test.get("status") or "").lower()
        if status in FAILED_STATUSES and test.get("error"):
            return str(test["error"])
    return None


async def run(
    config: MonitorConfig,
    subject_kind: SubjectKind,
    subject_id: str,
    timeout: float,
    retries: int = 1,
    build_version_id: str | None = None,
) -> int:
    """Queue the job, monitor it, and return the exit code."""
    log = logging.getLogger("run_test_action")

    async with BackendClient.from_config(config) as client:
        try:
            job = await client.submit_job(
                subject_kind,
                subject_id,
                retries=retries,
                build_version_id=build_version_id,
            )
        except (RuntimeError, aiohttp.ClientError, TimeoutError) as exc:
            log.error("%s", exc)
            error = {"status": "error", "success": False, "message": str(exc)}
            print(json.dumps(error))
            return 1

        log.info("Task queued: %s, starting real-time monitoring...", job.task_id)
        result = await client.monitor(job, timeout)

        report_link = None
        if job.subject_kind == "test" and result.payload and result.reason == "event":
            log.info("Generating shareable report link...")
            report_link = await client.generate_report_link(result.payload)

    log_result_summary(log, job, result, report_link)
    print(json.dumps(format_output(job, result, report_link), indent=2))

    return 0 if result.success else 1


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run a test or workflow and monitor it until it finishes"
    )
    subject = parser.add_mutually_exclusive_group(required=True)
    subject.add_argument("--test-id", help="Test to run")
    subject.add_argument("--workflow-id", help="Workflow to run")
    parser.add_argument(
        "--retries", type=int, default=1, help="Retries requested for the run"
    )
    parser.add_argument(
        "--build-version-id", default=None, help="Build version to test against"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=3600,
        help="Maximum seconds to wait for the run to finish",
    )
    parser.add_argument("--backend-url", default=None, help="Backend base URL")
    parser.add_argument("--device-url", default=None, help="Execution base URL")

    args = parser.parse_args()

    api_key = os.environ.get(API_KEY_ENV)
    if not api_key:
        parser.error(f"Missing {API_KEY_ENV}, get an API token from your settings")

    overrides = {
        key: value
        for key, value in {
            "backend_url": args.backend_url,
            "device_url": args.device_url,
        }.items()
        if value
    }
    config = MonitorConfig(api_key=api_key, **overrides)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    subject_kind: SubjectKind = "test" if args.test_id else "workflow"
    exit_code = asyncio.run(
        run(
            config=config,
            subject_kind=subject_kind,
            subject_id=args.test_id or args.workflow_id,
            timeout=args.timeout,
            retries=args.retries,
            build_version_id=args.build_version_id,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
