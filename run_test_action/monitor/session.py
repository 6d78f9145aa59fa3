"""Monitor session: follows one job on the shared event stream to its outcome."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from run_test_action.models.events import (
    TERMINAL_EVENTS,
    ConnectionReady,
    Heartbeat,
    InitialState,
    ItemStarted,
    ItemUpdated,
    ParseFailure,
    ProtocolError,
    StreamEvent,
    TerminalEvent,
    TerminalOutcome,
)
from run_test_action.models.job import Job, SubjectKind
from run_test_action.models.result import (
    ChildCounts,
    ChildOutcome,
    FallbackAnswer,
    MonitorResult,
    MonitorStatus,
    ResolutionReason,
)
from run_test_action.monitor.connection import Closed, Opened, Received, Signal
from run_test_action.monitor.fallback import STATUS_TO_OUTCOME, terminal_outcome
from run_test_action.monitor.parser import parse_event
from run_test_action.monitor.policy import GiveUp, ReconnectionPolicy
from run_test_action.monitor.tracker import ChildItemTracker
from run_test_action.progress import format_progress

log = logging.getLogger(__name__)

type SessionState = Literal[
    "idle",
    "connecting",
    "streaming",
    "reconnecting",
    "resolving_via_fallback",
    "resolved",
    "timed_out",
]
type Effect = Literal["continue", "resolved", "reconnect", "confirm"]

CHILD_OUTCOMES: Mapping[TerminalOutcome, ChildOutcome] = {
    "completed": "passed",
    "failed": "failed",
    "cancelled": "cancelled",
}
SEPARATOR = "━" * 40


class StreamConnection(Protocol):
    """A single subscription to the event stream."""

    def signals(self) -> AsyncGenerator[Signal, None]:
        """Yield Opened, then Received events, then exactly one Closed."""
        ...

    def close(self) -> None:
        """Dispose of the subscription. Safe to call more than once."""
        ...


class StatusResolver(Protocol):
    """Authoritative, one-shot status lookup."""

    async def resolve(self, job: Job) -> FallbackAnswer | None:
        """Return the current status, or None when it cannot be determined."""
        ...


type ConnectionFactory = Callable[[int], StreamConnection]


@dataclass(kw_only=True)
class MonitorSession:
    """Watches one job until it completes, fails, is cancelled or time runs out.

    All signals (connection opened, event received, connection closed, timer
    fired) are handled on the event loop one at a time, so the state below
    needs no locking. ``handle_open``, ``handle_event`` and ``handle_close``
    are the transition functions; ``run`` drives them from live connections,
    sleeps between reconnects, and enforces the deadline.

    The result is produced exactly once. ``on_result``, if given, is called
    with it at that moment.
    """

    job: Job
    connect: ConnectionFactory = field(repr=False)
    resolver: StatusResolver = field(repr=False)
    timeout: float
    policy: ReconnectionPolicy = field(default_factory=ReconnectionPolicy)
    progress: logging.Logger = field(
        default=logging.getLogger("run_test_action.progress"), repr=False
    )
    report_url: Callable[[str], str] | None = field(default=None, repr=False)
    on_result: Callable[[MonitorResult], None] | None = field(
        default=None, repr=False
    )

    state: SessionState = field(default="idle", init=False)
    tracker: ChildItemTracker = field(default_factory=ChildItemTracker, init=False)

    _result: MonitorResult | None = field(default=None, init=False)
    _sequence: int = field(default=0, init=False)
    _failures: int = field(default=0, init=False)
    _total_reconnects: int = field(default=0, init=False)
    _seen_alive: bool = field(default=False, init=False)
    _header_logged: bool = field(default=False, init=False)
    _last_progress: str | None = field(default=None, init=False)
    _started_at: float = field(default=0.0, init=False)
    _deadline: float = field(default=0.0, init=False)

    @property
    def result(self) -> MonitorResult | None:
        """The terminal result, once resolved."""
        return self._result

    @property
    def reconnects(self) -> int:
        """Total number of reconnects scheduled during the session."""
        return self._total_reconnects

    async def run(self) -> MonitorResult:
        """Monitor the job and return its outcome.

        Never raises for stream, transport or status lookup failures; those
        are reflected in the returned result. The deadline always wins: any
        pending read, backoff wait or status lookup is abandoned when it hits.
        """
        if self.state != "idle":
            raise RuntimeError("A monitor session can only be run once")

        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        self._deadline = self._started_at + self.timeout
        self.state = "connecting"
        log.info(
            "Monitoring %s task %s (timeout=%ss)",
            self.job.subject_kind,
            self.job.task_id,
            self.timeout,
        )

        deadline = asyncio.timeout_at(self._deadline)
        try:
            async with deadline:
                await self._drive()
        except TimeoutError:
            if not deadline.expired():
                raise
            self._time_out()

        if self._result is None:
            raise RuntimeError("Monitor session ended without a result")
        return self._result

    def remaining(self) -> float:
        """Seconds left until the session deadline."""
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    def elapsed(self) -> float:
        """Seconds since the session started."""
        return asyncio.get_running_loop().time() - self._started_at

    def handle_open(self) -> None:
        """A connection attempt was accepted by the server."""
        if self._result is not None:
            return

        self.state = "streaming"
        if self._failures:
            log.info("Stream reconnected after %d failed attempt(s)", self._failures)
        else:
            self.progress.info("🔗 Stream connection established")
        # A successful open forgives earlier failures
        self._failures = 0

    def handle_close(self, detail: str) -> None:
        """The current connection attempt ended before the job did."""
        if self._result is not None:
            return

        self.state = "reconnecting"
        self._failures += 1
        log.warning("Stream connection lost: %s", detail)

    def handle_event(self, event: StreamEvent) -> Effect:
        """Apply one parsed event and tell the driver what to do next."""
        if self._result is not None:
            return "resolved"

        if isinstance(event, ParseFailure):
            log.warning(
                "Dropping malformed %s event: %s", event.event_type, event.reason
            )
            log.debug("Malformed event data: %s", event.raw)
            return "continue"

        if isinstance(event, ConnectionReady):
            log.info("Connected to organization: %s", event.org_id)
            return "continue"

        if isinstance(event, Heartbeat):
            log.debug("Heartbeat (active_tests=%s)", event.active_tests)
            return "continue"

        if isinstance(event, ProtocolError):
            return self._on_protocol_error(event)

        if isinstance(event, InitialState):
            return self._on_snapshot(event)

        if isinstance(event, ItemStarted):
            self._on_started(event)
            return "continue"

        if isinstance(event, ItemUpdated):
            if self._is_own(event.subject, event.task_id):
                self._seen_alive = True
                self._log_progress(event.progress)
            return "continue"

        if isinstance(event, TERMINAL_EVENTS):
            return self._on_terminal(event)

        return "continue"

    async def _drive(self) -> None:
        while self._result is None:
            self.state = "connecting"
            connection = self.connect(self._sequence)
            self._sequence += 1
            try:
                detail = await self._stream(connection)
            finally:
                connection.close()

            if self._result is not None:
                return

            self.handle_close(detail)
            decision = self.policy.next(self._failures, self.remaining())
            if isinstance(decision, GiveUp):
                log.error("Giving up on the event stream: %s", decision.reason)
                await self._resolve_via_fallback()
                return

            delay = min(decision.delay, self.remaining())
            self._total_reconnects += 1
            log.info(
                "⏳ Reconnecting in %.1fs (attempt %d/%d)",
                delay,
                self._failures,
                self.policy.max_attempts,
            )
            await asyncio.sleep(delay)

    async def _stream(self, connection: StreamConnection) -> str:
        """Consume one connection attempt, returning why it ended."""
        async with aclosing(connection.signals()) as signals:
            async for signal in signals:
                if isinstance(signal, Opened):
                    self.handle_open()
                elif isinstance(signal, Received):
                    event = parse_event(signal.event_type, signal.data)
                    effect = self.handle_event(event)
                    if effect == "confirm":
                        effect = await self._confirm_finished()
                    if effect == "resolved":
                        return "resolved"
                    if effect == "reconnect":
                        return f"server error event on {signal.event_type!r}"
                elif isinstance(signal, Closed):
                    return signal.detail
        return "stream closed"

    def _is_own(self, subject: SubjectKind, task_id: str) -> bool:
        return subject == self.job.subject_kind and task_id == self.job.task_id

    def _is_child(
        self, subject: SubjectKind, task_id: str, parent_task_id: str | None
    ) -> bool:
        if self.job.subject_kind != "workflow" or subject != "test":
            return False
        return parent_task_id == self.job.task_id or task_id in self.tracker

    def _on_protocol_error(self, event: ProtocolError) -> Effect:
        if event.task_id == self.job.task_id:
            log.error("Stream error for task %s: %s", event.task_id, event.message)
            self._resolve("error", "protocol_error", message=event.message)
            return "resolved"

        if event.task_id is None:
            log.warning("Stream error event: %s", event.message)
            return "reconnect"

        log.debug("Ignoring stream error for task %s: %s", event.task_id, event.message)
        return "continue"

    def _on_snapshot(self, event: InitialState) -> Effect:
        if self.job.subject_kind == "workflow":
            running = event.running_workflows
            for test in event.running_tests:
                if test.parent_task_id == self.job.task_id:
                    self._child_started(test.task_id, test.name)
        else:
            running = event.running_tests

        own = next((task for task in running if task.task_id == self.job.task_id), None)
        if own is not None:
            self._seen_alive = True
            self._log_header(own.name, own.status)
            self._log_progress(own.status)
            return "continue"

        if self._seen_alive:
            # Gone from the running set without a terminal event: either it
            # finished while we were disconnected or the snapshot omitted it.
            return "confirm"

        return "continue"

    def _on_started(self, event: ItemStarted) -> None:
        if self._is_own(event.subject, event.task_id):
            self._seen_alive = True
            self._log_header(event.name, event.status)
            self._log_progress(event.status)
        elif self._is_child(event.subject, event.task_id, event.parent_task_id):
            self._child_started(event.task_id, event.name)

    def _on_terminal(self, event: TerminalEvent) -> Effect:
        if self._is_own(event.subject, event.task_id):
            self._apply_child_results(event.results)
            self._finish(event.outcome, "event", name=event.name, payload=event.results)
            return "resolved"

        if self._is_child(event.subject, event.task_id, event.parent_task_id):
            self._child_finished(
                event.task_id, CHILD_OUTCOMES[event.outcome], event.name
            )

        return "continue"

    def _apply_child_results(self, results: Mapping[str, Any] | None) -> None:
        """Record child outcomes listed on the job's own terminal event."""
        if self.job.subject_kind != "workflow" or not results:
            return

        tests = results.get("tests")
        if not isinstance(tests, list):
            return

        for entry in tests:
            if not isinstance(entry, dict):
                continue
            task_id = entry.get("task_id")
            outcome = STATUS_TO_OUTCOME.get(str(entry.get("status", "")).lower())
            if isinstance(task_id, str) and outcome is not None:
                name = entry.get("test_name")
                self._child_finished(task_id, CHILD_OUTCOMES[outcome], name)

    def _child_started(self, task_id: str, name: str | None) -> None:
        name = name or "Unknown Test"
        if not self.tracker.observe_started(task_id, name):
            return

        self.progress.info("  🧪 %s", name)
        if self.report_url is not None:
            self.progress.info("     📋 Report: %s", self.report_url(task_id))

    def _child_finished(
        self, task_id: str, outcome: ChildOutcome, name: str | None
    ) -> None:
        elapsed = self.tracker.elapsed(task_id)
        if not self.tracker.observe_terminal(task_id, outcome, name):
            return

        item = self.tracker.get(task_id)
        label = item.name if item is not None else task_id
        took = f" ({elapsed:.0f}s)" if elapsed is not None else ""
        if outcome == "passed":
            self.progress.info("     ✅ %s passed%s", label, took)
        elif outcome == "failed":
            self.progress.info("     ❌ %s failed%s", label, took)
        else:
            self.progress.warning("     ⚠️ %s cancelled", label)

    def _log_header(self, name: str | None, status: Mapping[str, Any]) -> None:
        if self._header_logged:
            return

        self._header_logged = True
        name = name or self.job.subject_id
        if self.job.subject_kind == "workflow":
            total = status.get("total_tests") or "?"
            self.progress.info("🚀 %s (%s tests)", name, total)
        else:
            self.progress.info("🚀 Test Started: %s", name)

    def _log_progress(self, status: Mapping[str, Any]) -> None:
        line = format_progress(status, self.job.subject_kind)
        if line != self._last_progress:
            self._last_progress = line
            self.progress.info(line)

    async def _confirm_finished(self) -> Effect:
        log.info(
            "%s no longer in running list - checking final status...", self.job.label
        )
        answer = await self.resolver.resolve(self.job)
        if self._result is not None:
            return "resolved"

        outcome = terminal_outcome(answer) if answer is not None else None
        if answer is None or outcome is None:
            log.info("Final status not confirmed, continuing to monitor the stream")
            return "continue"

        self._finish(
            outcome, "fallback", counts=answer.counts(), payload=answer.payload
        )
        return "resolved"

    async def _resolve_via_fallback(self) -> None:
        self.state = "resolving_via_fallback"
        log.info("Attempting to fetch final status via REST API...")
        answer = await self.resolver.resolve(self.job)

        if answer is None:
            self._resolve(
                "unknown",
                "fallback_unavailable",
                message="Event stream failed and the final status could not be fetched",
            )
            return

        if (outcome := terminal_outcome(answer)) is None:
            self._resolve(
                "unknown",
                "fallback_unavailable",
                counts=answer.counts() if self.job.subject_kind == "workflow" else None,
                message=f"Event stream failed while the task was still {answer.status}",
                payload=answer.payload,
            )
            return

        self._finish(
            outcome, "fallback", counts=answer.counts(), payload=answer.payload
        )

    def _time_out(self) -> None:
        log.warning("%s monitoring timed out", self.job.label)
        self._resolve(
            "unknown",
            "timeout",
            message=(
                f"Timeout of {self.timeout}s reached while waiting for task to finish"
            ),
        )

    def _finish(
        self,
        outcome: TerminalOutcome,
        reason: ResolutionReason,
        *,
        name: str | None = None,
        counts: ChildCounts | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        if self.job.subject_kind == "workflow":
            counts = counts or self.tracker.counts()
            self._log_workflow_summary(outcome, name, counts)
        else:
            counts = None
            self._log_test_summary(outcome, name)

        self._resolve(outcome, reason, counts=counts, payload=payload)

    def _log_workflow_summary(
        self, outcome: TerminalOutcome, name: str | None, counts: ChildCounts
    ) -> None:
        name = name or self.job.subject_id
        seconds = self.elapsed()
        self.progress.info("")
        self.progress.info(SEPARATOR)
        if outcome == "completed":
            self.progress.info("%s completed in %.0fs", name, seconds)
        elif outcome == "failed":
            self.progress.info("%s failed after %.0fs", name, seconds)
        else:
            self.progress.warning("⚠️ %s cancelled after %.0fs", name, seconds)
        self.progress.info("%d passed, %d failed", counts.passed, counts.failed)
        self.progress.info(SEPARATOR)

    def _log_test_summary(self, outcome: TerminalOutcome, name: str | None) -> None:
        name = name or self.job.subject_id
        if outcome == "completed":
            self.progress.info("✅ Test completed: %s", name)
        elif outcome == "failed":
            self.progress.info("❌ Test failed: %s", name)
        else:
            self.progress.warning("🚫 Test cancelled: %s", name)

    def _resolve(
        self,
        status: MonitorStatus,
        reason: ResolutionReason,
        *,
        counts: ChildCounts | None = None,
        message: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> None:
        if self._result is not None:
            return

        if counts is None and self.job.subject_kind == "workflow":
            counts = self.tracker.counts()

        self._result = MonitorResult(
            task_id=self.job.task_id,
            status=status,
            reason=reason,
            duration=self.elapsed(),
            reconnects=self._total_reconnects,
            counts=counts,
            message=message,
            payload=payload,
        )
        self.state = "timed_out" if reason == "timeout" else "resolved"
        log.info(
            "Task %s resolved: status=%s reason=%s", self.job.task_id, status, reason
        )

        if self.on_result is not None:
            self.on_result(self._result)
