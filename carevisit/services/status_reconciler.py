"""Status reconciler - turn raw schedule records into canonical visits with one display status."""

from typing import Any, Iterable, Optional
from datetime import datetime
from pydantic import ValidationError

from carevisit.models.schedule_record import ScheduleRecord, TaskRecord
from carevisit.models.visit import (
    CompletionState,
    DisplayStatus,
    ServerStatus,
    Task,
    Visit,
)
from carevisit.services.grace_period import Phase, evaluate_phase
from carevisit.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

# Server states that are authoritative regardless of the clock
_PASS_THROUGH = {
    ServerStatus.IN_PROGRESS: DisplayStatus.IN_PROGRESS,
    ServerStatus.COMPLETED: DisplayStatus.COMPLETED,
    ServerStatus.CANCELLED: DisplayStatus.CANCELLED,
    ServerStatus.MISSED: DisplayStatus.MISSED,
}

_TASK_STATUS_MAP = {
    "completed": CompletionState.DONE,
    "not_completed": CompletionState.NOT_DONE,
}


def reconcile(
    server_status: ServerStatus,
    scheduled_at: datetime,
    now: datetime,
    grace_minutes: Optional[int] = None,
) -> DisplayStatus:
    """
    Derive a visit's display status.
    
    Server-reported active/terminal states always win. Only a ``scheduled``
    visit consults the clock, and an expired one is shown as missed before
    the server's own missed-detection catches up. The result is advisory; it
    never feeds back into ``server_status``.
    """
    server_status = ServerStatus(server_status)
    if server_status in _PASS_THROUGH:
        return _PASS_THROUGH[server_status]
    
    phase = evaluate_phase(scheduled_at, now, grace_minutes=grace_minutes)
    if phase == Phase.GRACE:
        return DisplayStatus.GRACE_PERIOD
    if phase == Phase.EXPIRED:
        return DisplayStatus.MISSED
    return DisplayStatus.SCHEDULED


def build_task(record: TaskRecord) -> Task:
    """Map a server task onto the tri-state completion model."""
    state = _TASK_STATUS_MAP.get((record.status or "").lower(), CompletionState.UNSET)
    reason = record.reason if state == CompletionState.NOT_DONE else None
    return Task(
        id=record.id,
        description=record.description,
        completion_state=state,
        reason=reason,
    )


def build_visit(record: ScheduleRecord) -> Visit:
    """Convert one raw schedule record into a canonical Visit."""
    return Visit(
        id=record.id,
        scheduled_at=record.shift_time,
        server_status=ServerStatus(record.status.lower()),
        started_at=record.start_time,
        ended_at=record.end_time,
        tasks=[build_task(t) for t in record.tasks],
        location=record.location or "",
        user_id=record.user_id,
        client_name=record.client_name,
    )


def build_visits(records: Iterable[Any]) -> list[Visit]:
    """
    Convert raw records (dicts or ScheduleRecord) into visits.
    
    Records that fail validation are logged and dropped so one malformed
    entry cannot take down a whole poll.
    """
    visits: list[Visit] = []
    for raw in records:
        try:
            record = raw if isinstance(raw, ScheduleRecord) else ScheduleRecord.model_validate(raw)
            visits.append(build_visit(record))
        except (ValidationError, ValueError) as e:
            raw_id = raw.get("id") if isinstance(raw, dict) else getattr(raw, "id", None)
            raw_user = raw.get("user_id") if isinstance(raw, dict) else getattr(raw, "user_id", None)
            logger.warning(
                "Dropping malformed schedule record",
                schedule_id=raw_id,
                user_id=mask_user_id(str(raw_user)) if raw_user is not None else None,
                error=str(e),
            )
    return visits
