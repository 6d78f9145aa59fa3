"""Resilient monitoring of a job over the shared event stream."""

from run_test_action.monitor.connection import ConnectionAttempt, EventStreamDecoder
from run_test_action.monitor.fallback import FallbackResolver
from run_test_action.monitor.parser import parse_event
from run_test_action.monitor.policy import GiveUp, ReconnectionPolicy, Retry
from run_test_action.monitor.session import MonitorSession
from run_test_action.monitor.tracker import ChildItemTracker

__all__ = [
    "ChildItemTracker",
    "ConnectionAttempt",
    "EventStreamDecoder",
    "FallbackResolver",
    "GiveUp",
    "MonitorSession",
    "ReconnectionPolicy",
    "Retry",
    "parse_event",
]
