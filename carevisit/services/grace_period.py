"""Grace-period evaluator - temporal phase of a visit relative to its scheduled start."""

from enum import Enum
from typing import Optional
from datetime import datetime, timedelta

from carevisit.utils.clock import ensure_aware
from carevisit.utils.config import ScheduleConfig


class Phase(str, Enum):
    """Where ``now`` sits relative to a visit's scheduled start."""
    UPCOMING = "upcoming"
    READY = "ready"
    GRACE = "grace"
    EXPIRED = "expired"


def evaluate_phase(
    scheduled_at: datetime,
    now: datetime,
    grace_minutes: Optional[int] = None,
    ready_window_minutes: Optional[int] = None,
) -> Phase:
    """
    Compute the temporal phase of a visit.
    
    ``delta = scheduled_at - now``; positive means the shift is in the future.
    Exactly on time (delta == 0) is READY; exactly at the end of the grace
    window is still GRACE.
    """
    if grace_minutes is None:
        grace_minutes = ScheduleConfig.GRACE_PERIOD_MINUTES
    if ready_window_minutes is None:
        ready_window_minutes = ScheduleConfig.READY_WINDOW_MINUTES
    
    delta = ensure_aware(scheduled_at) - ensure_aware(now)
    
    if delta > timedelta(minutes=ready_window_minutes):
        return Phase.UPCOMING
    if delta >= timedelta(0):
        return Phase.READY
    if delta >= -timedelta(minutes=grace_minutes):
        return Phase.GRACE
    return Phase.EXPIRED


def grace_deadline(scheduled_at: datetime, grace_minutes: Optional[int] = None) -> datetime:
    """Last instant at which a late clock-in is still accepted."""
    if grace_minutes is None:
        grace_minutes = ScheduleConfig.GRACE_PERIOD_MINUTES
    return ensure_aware(scheduled_at) + timedelta(minutes=grace_minutes)
