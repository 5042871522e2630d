"""Raw schedule API record models, parsed leniently at the API boundary."""

from typing import Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskRecord(BaseModel):
    """Task as returned by the schedule API."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Task ID")
    schedule_id: Optional[str] = Field(None, description="Owning schedule ID")
    description: str = Field(default="", description="Task text")
    status: Optional[str] = Field(None, description="completed, not_completed, or null")
    reason: Optional[str] = Field(None, description="Reason given when not completed")
    completed_at: Optional[datetime] = None

    @field_validator("id", "schedule_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ScheduleRecord(BaseModel):
    """Visit (schedule) as returned by the schedule API."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Schedule ID")
    user_id: Optional[str] = Field(None, description="Caregiver user ID")
    client_name: Optional[str] = Field(None, description="Client name")
    location: Optional[str] = Field(None, description="Visit address")
    shift_time: datetime = Field(..., description="Scheduled shift start")
    status: str = Field(..., description="scheduled, in_progress, completed, cancelled, missed")
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    tasks: list[TaskRecord] = Field(default_factory=list)

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("tasks", mode="before")
    @classmethod
    def _null_tasks(cls, value: Any) -> Any:
        return [] if value is None else value
