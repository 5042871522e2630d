"""Clock-in/clock-out gate decisions."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from carevisit.models.visit import ServerStatus


class DenialReason(str, Enum):
    """Why a clock action is currently not allowed."""
    ALREADY_MISSED = "already_missed"
    GRACE_PERIOD_EXPIRED = "grace_period_expired"
    NO_TASKS_ASSIGNED = "no_tasks_assigned"
    WRONG_STATUS = "wrong_status"
    NOT_IN_PROGRESS = "not_in_progress"
    TASKS_UNADDRESSED = "tasks_unaddressed"


class VisitAction(str, Enum):
    """Primary action offered for a visit card."""
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"
    VIEW = "view"


class ClockDecision(BaseModel):
    """Outcome of a gate check. Truthy when the action is permitted."""
    permitted: bool
    reason: Optional[DenialReason] = None
    message: Optional[str] = Field(None, description="Human-readable denial cause")
    actual_status: Optional[ServerStatus] = Field(None, description="Server status behind a WRONG_STATUS denial")
    task_ids: list[str] = Field(default_factory=list, description="Tasks behind a TASKS_UNADDRESSED denial")

    def __bool__(self) -> bool:
        return self.permitted

    @classmethod
    def permit(cls) -> "ClockDecision":
        return cls(permitted=True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str, **details) -> "ClockDecision":
        return cls(permitted=False, reason=reason, message=message, **details)
