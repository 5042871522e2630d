"""Schedule store - the caregiver's current visit set and its categorized views."""

from typing import Callable, Optional, Protocol
from datetime import datetime, tzinfo
from pydantic import BaseModel, Field

from carevisit.models.schedule_record import ScheduleRecord
from carevisit.models.visit import DisplayStatus, Visit
from carevisit.services.status_reconciler import build_visits
from carevisit.utils.clock import Clock, SystemClock, ensure_aware, local_day_bounds
from carevisit.utils.config import get_caregiver_timezone
from carevisit.utils.logging import get_structured_logger, correlation_context, timed

logger = get_structured_logger(__name__)

Subscriber = Callable[["ScheduleStore"], None]

_UPCOMING = {DisplayStatus.SCHEDULED, DisplayStatus.GRACE_PERIOD}
_MISSED = {DisplayStatus.MISSED, DisplayStatus.CANCELLED}


class DashboardRecordSource(Protocol):
    async def fetch_dashboard_records(self) -> list[ScheduleRecord]:
        ...


class DashboardStats(BaseModel):
    """Counters for the caregiver's day."""
    missed: int = 0
    upcoming: int = 0
    completed: int = 0


class DataAnomaly(BaseModel):
    """Server data that breaks a client-side invariant."""
    kind: str = Field(..., description="multiple_in_progress or in_progress_without_tasks")
    visit_ids: list[str]
    detail: str


class ScheduleStore:
    """
    Holds the most recent reconciled visit set, keyed by id.
    
    A poll replaces the whole set in one assignment, and only when it started
    after the poll currently applied, so a slow stale response never
    overwrites fresher data. Display statuses are derived on every read.
    """
    
    def __init__(
        self,
        clock: Optional[Clock] = None,
        tz: Optional[tzinfo] = None,
        grace_minutes: Optional[int] = None,
    ):
        self.clock = clock or SystemClock()
        self.tz = tz if tz is not None else get_caregiver_timezone()
        self.grace_minutes = grace_minutes
        self._visits: dict[str, Visit] = {}
        self._poll_counter = 0
        self._applied_token = 0
        self._subscribers: list[Subscriber] = []
    
    # Poll lifecycle
    
    def begin_poll(self) -> int:
        """Reserve a token that orders this poll by its start."""
        self._poll_counter += 1
        return self._poll_counter
    
    def commit_poll(self, token: int, visits: list[Visit]) -> bool:
        """Apply a poll result unless a later-started poll already landed."""
        if token <= self._applied_token:
            logger.info(
                "Discarding stale poll result",
                poll_token=token,
                applied_token=self._applied_token,
                visit_count=len(visits),
            )
            return False
        
        self._visits = {v.id: v for v in visits}
        self._applied_token = token
        logger.debug("Poll applied", poll_token=token, visit_count=len(visits))
        self._report_anomalies()
        self._notify()
        return True
    
    @timed("schedule_refresh")
    async def refresh(self, source: DashboardRecordSource) -> bool:
        """Fetch the dashboard visit set and apply it. Transport errors propagate."""
        with correlation_context(prefix="poll"):
            token = self.begin_poll()
            records = await source.fetch_dashboard_records()
            return self.commit_poll(token, build_visits(records))
    
    def upsert(self, visit: Visit) -> None:
        """
        Replace a single visit wholesale after a confirmed transition.
        
        Polls begun before this point are treated as stale so they cannot
        roll the confirmed visit back.
        """
        self._visits = {**self._visits, visit.id: visit}
        self._applied_token = self._poll_counter
        self._notify()
    
    # Subscriptions
    
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)
        
        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        
        return unsubscribe
    
    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception as e:
                logger.error(
                    "Schedule store subscriber failed",
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                    error=str(e),
                    exc_info=True,
                )
    
    # Reads
    
    def get(self, visit_id: str) -> Optional[Visit]:
        return self._visits.get(visit_id)
    
    def visits(self) -> tuple[Visit, ...]:
        return tuple(self._visits.values())
    
    def __len__(self) -> int:
        return len(self._visits)
    
    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_aware(now) if now is not None else self.clock.now()
    
    def _day_bounds(self, now: datetime) -> tuple[datetime, datetime]:
        return local_day_bounds(now, self.tz)
    
    def _today(self, now: datetime, statuses: set[DisplayStatus]) -> list[Visit]:
        start, end = self._day_bounds(now)
        matches = [
            v for v in self._visits.values()
            if start <= v.scheduled_at < end
            and v.display_status(now, grace_minutes=self.grace_minutes) in statuses
        ]
        return sorted(matches, key=lambda v: (v.scheduled_at, v.id))
    
    def _in_progress(self, now: datetime) -> list[Visit]:
        return [
            v for v in self._visits.values()
            if v.display_status(now, grace_minutes=self.grace_minutes) == DisplayStatus.IN_PROGRESS
        ]
    
    def active(self, now: Optional[datetime] = None) -> Optional[Visit]:
        """
        The visit currently in progress.
        
        More than one is a server-side anomaly; the most recently started one
        wins, then the lowest id.
        """
        candidates = self._in_progress(self._now(now))
        if not candidates:
            return None
        if len(candidates) > 1:
            logger.warning(
                "Multiple visits in progress",
                visit_ids=sorted(v.id for v in candidates),
            )
        return _pick_active(candidates)
    
    def upcoming_today(self, now: Optional[datetime] = None) -> list[Visit]:
        return self._today(self._now(now), _UPCOMING)
    
    def missed_today(self, now: Optional[datetime] = None) -> list[Visit]:
        return self._today(self._now(now), _MISSED)
    
    def completed_today(self, now: Optional[datetime] = None) -> list[Visit]:
        return self._today(self._now(now), {DisplayStatus.COMPLETED})
    
    def stats(self, now: Optional[datetime] = None) -> DashboardStats:
        now = self._now(now)
        return DashboardStats(
            missed=len(self.missed_today(now)),
            upcoming=len(self.upcoming_today(now)),
            completed=len(self.completed_today(now)),
        )
    
    def anomalies(self, now: Optional[datetime] = None) -> list[DataAnomaly]:
        in_progress = self._in_progress(self._now(now))
        found: list[DataAnomaly] = []
        if len(in_progress) > 1:
            found.append(DataAnomaly(
                kind="multiple_in_progress",
                visit_ids=sorted(v.id for v in in_progress),
                detail=f"{len(in_progress)} visits are in progress at once",
            ))
        for visit in in_progress:
            if not visit.tasks:
                found.append(DataAnomaly(
                    kind="in_progress_without_tasks",
                    visit_ids=[visit.id],
                    detail="Visit is in progress but has no tasks",
                ))
        return found
    
    def _report_anomalies(self) -> None:
        for anomaly in self.anomalies():
            logger.warning(
                "Schedule data anomaly",
                anomaly_kind=anomaly.kind,
                visit_ids=anomaly.visit_ids,
                detail=anomaly.detail,
            )


def _pick_active(candidates: list[Visit]) -> Visit:
    started = [v for v in candidates if v.started_at is not None]
    if started:
        latest = max(v.started_at for v in started)
        candidates = [v for v in started if v.started_at == latest]
    return min(candidates, key=lambda v: v.id)
