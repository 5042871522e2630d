"""Clock-in/clock-out gate - pure predicates deciding whether a clock action is allowed."""

from typing import Iterable, Optional
from datetime import datetime

from carevisit.models.decision import ClockDecision, DenialReason, VisitAction
from carevisit.models.visit import DisplayStatus, ServerStatus, Task, Visit
from carevisit.services.status_reconciler import reconcile

_WRONG_STATUS_MESSAGES = {
    ServerStatus.COMPLETED: "This visit has already been completed.",
    ServerStatus.IN_PROGRESS: "This visit is already in progress.",
    ServerStatus.CANCELLED: "This visit has been cancelled.",
}


def can_clock_in(visit: Visit, now: datetime, grace_minutes: Optional[int] = None) -> ClockDecision:
    """
    Check whether the caregiver may clock in to ``visit`` at ``now``.
    
    Checks run in a fixed order and stop at the first failure: server-missed,
    grace period expired, no tasks, then any non-scheduled status.
    """
    if visit.server_status == ServerStatus.MISSED:
        return ClockDecision.deny(
            DenialReason.ALREADY_MISSED,
            "This visit has been marked as missed and cannot be started.",
        )
    
    display = reconcile(visit.server_status, visit.scheduled_at, now, grace_minutes=grace_minutes)
    if display == DisplayStatus.MISSED:
        return ClockDecision.deny(
            DenialReason.GRACE_PERIOD_EXPIRED,
            "The grace period for this visit has passed. It will be marked as missed.",
        )
    
    if not visit.tasks:
        return ClockDecision.deny(
            DenialReason.NO_TASKS_ASSIGNED,
            "No tasks are assigned to this visit. Cannot clock in.",
        )
    
    if visit.server_status != ServerStatus.SCHEDULED:
        return ClockDecision.deny(
            DenialReason.WRONG_STATUS,
            _WRONG_STATUS_MESSAGES.get(visit.server_status, "This visit is not available for clock-in."),
            actual_status=visit.server_status,
        )
    
    return ClockDecision.permit()


def can_clock_out(visit: Visit, tasks: Optional[Iterable[Task]] = None) -> ClockDecision:
    """
    Check whether the caregiver may clock out of ``visit``.
    
    ``tasks`` is the caregiver's working copy (usually a TaskLedger); it
    defaults to the visit's own tasks.
    """
    if visit.server_status != ServerStatus.IN_PROGRESS:
        return ClockDecision.deny(
            DenialReason.NOT_IN_PROGRESS,
            "This visit is not in progress.",
        )
    
    tasks = visit.tasks if tasks is None else tasks
    unaddressed = [t.id for t in tasks if not t.is_addressed]
    if unaddressed:
        return ClockDecision.deny(
            DenialReason.TASKS_UNADDRESSED,
            "Complete every task or give a reason for each task not completed before clocking out.",
            task_ids=unaddressed,
        )
    
    return ClockDecision.permit()


def available_action(visit: Visit, now: datetime, grace_minutes: Optional[int] = None) -> VisitAction:
    """Primary action to offer on a visit card."""
    if visit.server_status == ServerStatus.IN_PROGRESS:
        return VisitAction.CLOCK_OUT
    if can_clock_in(visit, now, grace_minutes=grace_minutes):
        return VisitAction.CLOCK_IN
    return VisitAction.VIEW
