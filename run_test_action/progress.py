"""Human-readable progress lines."""

from collections.abc import Mapping
from typing import Any

from run_test_action.models.job import SubjectKind

STATUS_SYMBOLS = {
    "queued": "⏳",
    "running": "🏃",
    "setup": "🔧",
    "executing": "⚡",
    "teardown": "🧹",
    "completed": "✅",
    "failed": "❌",
    "cancelled": "🚫",
}
DEFAULT_SYMBOL = "📊"


def format_progress(status: Mapping[str, Any], subject: SubjectKind) -> str:
    """Render one progress line from a raw task status payload."""
    current = str(status.get("status") or "unknown")
    phase = status.get("phase")
    symbol = STATUS_SYMBOLS.get(current) or STATUS_SYMBOLS.get(
        str(phase), DEFAULT_SYMBOL
    )

    if subject == "test":
        parts = [f"{symbol} Status: {current.upper()}"]

        if phase and phase != current:
            parts.append(f"Phase: {phase}")

        if step := status.get("current_step"):
            parts.append(f'Step: "{step}"')

        step_index = status.get("current_step_index")
        total_steps = status.get("total_steps")
        if isinstance(step_index, int) and total_steps:
            parts.append(f"Progress: {step_index + 1}/{total_steps}")

        progress = status.get("progress")
        if isinstance(progress, int | float):
            parts.append(f"{round(progress * 100)}%")

        return " | ".join(parts)

    parts = [f"{symbol} Workflow: {current.upper()}"]

    if current_test := status.get("current_test"):
        parts.append(f'Current: "{status.get("current_test_name") or current_test}"')

    completed = status.get("completed_tests")
    total = status.get("total_tests")
    if isinstance(completed, int) and total:
        percentage = round(completed / total * 100)
        parts.append(f"Tests: {completed}/{total} ({percentage}%)")

    return " | ".join(parts)


def format_duration(seconds: float | None) -> str | None:
    """Format a duration in seconds as HH:MM:SS."""
    if not seconds or not isinstance(seconds, int | float):
        return None

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
