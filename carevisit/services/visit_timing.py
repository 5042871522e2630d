"""Countdown and elapsed-time helpers for visit cards."""

from typing import Optional
from datetime import datetime, timedelta
from pydantic import BaseModel

from carevisit.services.grace_period import Phase, evaluate_phase
from carevisit.utils.clock import ensure_aware
from carevisit.utils.config import ScheduleConfig


class Countdown(BaseModel):
    """Time until (or past) a visit's scheduled start."""
    hours: int
    minutes: int
    seconds: int
    phase: Phase

    @property
    def is_past_due(self) -> bool:
        return self.phase in (Phase.GRACE, Phase.EXPIRED)

    @property
    def is_in_grace_period(self) -> bool:
        return self.phase == Phase.GRACE

    @property
    def is_expired(self) -> bool:
        return self.phase == Phase.EXPIRED

    def label(self) -> str:
        if self.is_expired:
            return "Missed!"
        if self.hours > 0:
            clock = f"{self.hours:02d}:{self.minutes:02d}:{self.seconds:02d}"
        else:
            clock = f"{self.minutes:02d}:{self.seconds:02d}"
        if self.is_in_grace_period:
            return f"Grace Period: {clock}"
        return clock


def _split(span: timedelta) -> tuple[int, int, int]:
    total = max(int(span.total_seconds()), 0)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return hours, minutes, seconds


def countdown(scheduled_at: datetime, now: datetime, grace_minutes: Optional[int] = None) -> Countdown:
    """Countdown to the scheduled start; counts up while in the grace period."""
    phase = evaluate_phase(scheduled_at, now, grace_minutes=grace_minutes)
    if phase == Phase.EXPIRED:
        return Countdown(hours=0, minutes=0, seconds=0, phase=phase)
    
    delta = ensure_aware(scheduled_at) - ensure_aware(now)
    hours, minutes, seconds = _split(abs(delta))
    return Countdown(hours=hours, minutes=minutes, seconds=seconds, phase=phase)


def is_starting_soon(
    scheduled_at: datetime,
    now: datetime,
    threshold_minutes: Optional[int] = None,
) -> bool:
    """True when the shift starts within the display threshold (not yet started)."""
    if threshold_minutes is None:
        threshold_minutes = ScheduleConfig.STARTING_SOON_MINUTES
    delta = ensure_aware(scheduled_at) - ensure_aware(now)
    return timedelta(0) <= delta <= timedelta(minutes=threshold_minutes)


def elapsed_since(started_at: datetime, now: datetime) -> str:
    """Format the running duration of an in-progress visit as HH:MM:SS."""
    hours, minutes, seconds = _split(ensure_aware(now) - ensure_aware(started_at))
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
