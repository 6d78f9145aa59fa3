"""Models describing the job being monitored."""

from typing import Literal

from pydantic import Field

from run_test_action.models.base import Model

type SubjectKind = Literal["test", "workflow"]


class Job(Model):
    """One queued test or workflow execution, identified by its task id."""

    task_id: str = Field(
        ..., min_length=1, description="Task id returned on submission"
    )
    subject_kind: SubjectKind = Field(
        ..., description="Whether a test or a workflow runs"
    )
    subject_id: str = Field(..., description="Test or workflow id that was queued")

    @property
    def label(self) -> str:
        """Capitalized subject kind for human-facing lines."""
        return self.subject_kind.capitalize()
