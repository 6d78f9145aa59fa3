"""Reconnection policy with capped exponential backoff."""

from dataclasses import dataclass

MAX_RECONNECT_ATTEMPTS = 10
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0


@dataclass(frozen=True, kw_only=True)
class Retry:
    """Reconnect after waiting ``delay`` seconds."""

    delay: float


@dataclass(frozen=True, kw_only=True)
class GiveUp:
    """Stop reconnecting."""

    reason: str


@dataclass(frozen=True, kw_only=True)
class ReconnectionPolicy:
    """Decides whether and when to reconnect to the event stream.

    The delay doubles with every attempt, starting at ``initial_backoff`` and
    capped at ``max_backoff``. The policy has no state: the session passes the
    number of consecutive attempts that failed since the last successful open,
    counting the one just lost.
    """

    max_attempts: int = MAX_RECONNECT_ATTEMPTS
    initial_backoff: float = INITIAL_BACKOFF
    max_backoff: float = MAX_BACKOFF

    def delay_for(self, attempts: int) -> float:
        """Backoff delay in seconds before reconnect number ``attempts + 1``."""
        return min(self.max_backoff, self.initial_backoff * 2**attempts)

    def next(self, failures: int, remaining: float) -> Retry | GiveUp:
        """Decide what to do after a connection was lost.

        Args:
            failures: Consecutive failed attempts since the last successful open
            remaining: Seconds left until the session deadline

        Returns:
            Retry with the delay to wait, or GiveUp

        """
        if failures >= self.max_attempts:
            return GiveUp(reason=f"max reconnection attempts ({self.max_attempts})")
        if remaining <= 0:
            return GiveUp(reason="no time remaining")
        return Retry(delay=self.delay_for(max(0, failures - 1)))
