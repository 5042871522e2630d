"""Results of clock-out transitions."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from carevisit.models.visit import Visit


class ClockOutOutcome(str, Enum):
    """How completely a clock-out reached the server."""
    COMPLETED = "completed"
    DEGRADED = "degraded"
    UNCONFIRMED = "unconfirmed"


class TaskFlushOutcome(BaseModel):
    """Result of pushing one task's completion state to the server."""
    task_id: str
    succeeded: bool
    error: Optional[str] = None


class ClockOutResult(BaseModel):
    """Clock-out result; ``visit`` reflects only what the server confirmed."""
    outcome: ClockOutOutcome
    visit: Visit
    task_outcomes: list[TaskFlushOutcome] = Field(default_factory=list)
    ended_via_force_complete: bool = False
    location_degraded: bool = False
    warning: Optional[str] = Field(None, description="Message to show the caregiver on partial failure")

    @property
    def confirmed(self) -> bool:
        return self.outcome != ClockOutOutcome.UNCONFIRMED

    @property
    def failed_task_ids(self) -> list[str]:
        return [o.task_id for o in self.task_outcomes if not o.succeeded]
