"""Visit and Task models - the canonical client-side view of a caregiver's schedule."""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from carevisit.utils.clock import ensure_aware


class ServerStatus(str, Enum):
    """Visit status as last confirmed by the backend."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class DisplayStatus(str, Enum):
    """Client-derived status blending server truth with the clock."""
    SCHEDULED = "scheduled"
    GRACE_PERIOD = "grace_period"
    MISSED = "missed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CompletionState(str, Enum):
    """Tri-state task completion."""
    UNSET = "unset"
    DONE = "done"
    NOT_DONE = "not_done"


class Task(BaseModel):
    """A single care task attached to a visit."""
    id: str = Field(..., description="Task ID, unique within its visit")
    description: str = Field(default="", description="Task text shown to the caregiver")
    completion_state: CompletionState = Field(default=CompletionState.UNSET)
    reason: Optional[str] = Field(None, description="Why the task was not done")

    @property
    def is_addressed(self) -> bool:
        if self.completion_state == CompletionState.DONE:
            return True
        if self.completion_state == CompletionState.NOT_DONE:
            return bool(self.reason and self.reason.strip())
        return False


class Visit(BaseModel):
    """One scheduled caregiver-client appointment."""
    id: str = Field(..., description="Visit (schedule) ID")
    scheduled_at: datetime = Field(..., description="Nominal shift start")
    server_status: ServerStatus = Field(..., description="Last status confirmed by the server")
    started_at: Optional[datetime] = Field(None, description="Clock-in time")
    ended_at: Optional[datetime] = Field(None, description="Clock-out time")
    tasks: list[Task] = Field(default_factory=list, description="Tasks in display order")
    location: str = Field(default="", description="Visit address")
    user_id: Optional[str] = Field(None, description="Caregiver user ID")
    client_name: Optional[str] = Field(None, description="Client being visited")

    @field_validator("scheduled_at", "started_at", "ended_at")
    @classmethod
    def _normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_aware(value)

    def display_status(self, now: datetime, grace_minutes: Optional[int] = None) -> DisplayStatus:
        """Derive the display status for ``now``; never cached."""
        from carevisit.services.status_reconciler import reconcile

        return reconcile(self.server_status, self.scheduled_at, now, grace_minutes=grace_minutes)

    def task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)
