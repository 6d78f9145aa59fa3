"""Test factories for generating test data."""

from polyfactory.factories import DataclassFactory
from polyfactory.factories.pydantic_factory import ModelFactory

from run_test_action.models.job import Job
from run_test_action.models.result import MonitorResult


class JobFactory(ModelFactory[Job]):
    """Factory for Job."""

    subject_kind = "workflow"


class MonitorResultFactory(DataclassFactory[MonitorResult]):
    """Factory for MonitorResult."""

    __model__ = MonitorResult

    status = "completed"
    reason = "event"
    reconnects = 0
    counts = None
    message = None
    payload = None
