"""Deduplicating ledger of workflow child items."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from run_test_action.models.result import ChildCounts, ChildOutcome


@dataclass(kw_only=True)
class ChildItem:
    """One child test of a workflow, keyed by its own task id."""

    task_id: str
    name: str
    started_at: float | None
    outcome: ChildOutcome = "pending"

    @property
    def finished(self) -> bool:
        """Whether the outcome has been recorded."""
        return self.outcome != "pending"


@dataclass(kw_only=True)
class ChildItemTracker:
    """Tracks child items so replayed events never change the counts twice.

    Events restated after a reconnect are no-ops, and a terminal event for a
    child whose start was never seen still counts.
    """

    clock: Callable[[], float] = time.monotonic
    _items: dict[str, ChildItem] = field(default_factory=dict, init=False)

    def get(self, task_id: str) -> ChildItem | None:
        """Return the tracked child with the given task id, if any."""
        return self._items.get(task_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._items

    def observe_started(self, task_id: str, name: str) -> bool:
        """Record a child start. Returns False if the child was already known."""
        if task_id in self._items:
            return False
        self._items[task_id] = ChildItem(
            task_id=task_id, name=name, started_at=self.clock()
        )
        return True

    def observe_terminal(
        self, task_id: str, outcome: ChildOutcome, name: str | None = None
    ) -> bool:
        """Record a child outcome. Returns True only for the first one seen."""
        if outcome == "pending":
            raise ValueError("A terminal outcome is required")

        item = self._items.get(task_id)
        if item is None:
            self._items[task_id] = ChildItem(
                task_id=task_id,
                name=name or task_id,
                started_at=None,
                outcome=outcome,
            )
            return True

        if item.finished:
            return False

        item.outcome = outcome
        return True

    def elapsed(self, task_id: str) -> float | None:
        """Seconds since the child was first seen starting."""
        item = self._items.get(task_id)
        if item is None or item.started_at is None:
            return None
        return self.clock() - item.started_at

    def counts(self) -> ChildCounts:
        """Snapshot of outcomes across all tracked children."""
        outcomes = [item.outcome for item in self._items.values()]
        return ChildCounts(
            passed=outcomes.count("passed"),
            failed=outcomes.count("failed"),
            cancelled=outcomes.count("cancelled"),
            pending=outcomes.count("pending"),
            total=len(outcomes),
        )
