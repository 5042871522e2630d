"""Visit transition executor - clock-in/clock-out side effects against the schedule API."""

import asyncio
from functools import partial
from typing import Iterable, Optional, Protocol

from carevisit.models.transition import ClockOutOutcome, ClockOutResult, TaskFlushOutcome
from carevisit.models.visit import CompletionState, ServerStatus, Task, Visit
from carevisit.services.geolocation import Coordinates, GeolocationProvider, resolve_position
from carevisit.services.schedule_store import ScheduleStore
from carevisit.utils.clock import Clock, SystemClock
from carevisit.utils.errors import TransportError
from carevisit.utils.logging import (
    correlation_context,
    get_structured_logger,
    log_timing,
)

logger = get_structured_logger(__name__)

_TASK_WIRE_STATUS = {
    CompletionState.DONE: "completed",
    CompletionState.NOT_DONE: "not_completed",
}


class VisitApi(Protocol):
    async def start_visit(self, visit_id: str, coordinates: Coordinates) -> dict:
        ...

    async def end_visit(self, visit_id: str, coordinates: Coordinates) -> dict:
        ...

    async def update_task_status(self, task_id: str, status: str, reason: Optional[str] = None) -> dict:
        ...

    async def update_visit_status(self, visit_id: str, status: str) -> dict:
        ...


class VisitTransitionExecutor:
    """
    Perform clock-in and clock-out against the server.
    
    Gate checks are the caller's job; this class only executes. Local state
    changes only after the server confirms, and confirmed visits are pushed
    into the attached store.
    """
    
    def __init__(
        self,
        api: VisitApi,
        geolocation: Optional[GeolocationProvider] = None,
        clock: Optional[Clock] = None,
        store: Optional[ScheduleStore] = None,
        geolocation_timeout: Optional[float] = None,
    ):
        self.api = api
        self.geolocation = geolocation
        self.clock = clock or SystemClock()
        self.store = store
        self.geolocation_timeout = geolocation_timeout
        self._detached: set[asyncio.Task] = set()
    
    async def clock_in(self, visit: Visit) -> Visit:
        """
        Start a visit.
        
        Raises TransportError unchanged when the start call fails; ``visit``
        is left as it was so the caller can retry. Once submitted, the call
        runs to completion even if the awaiting caller is cancelled.
        """
        return await self._submit(self._clock_in(visit), "clock_in", visit.id)
    
    async def _clock_in(self, visit: Visit) -> Visit:
        with correlation_context(prefix="clockin"):
            fix = await resolve_position(self.geolocation, self.geolocation_timeout)
            
            with log_timing("start_visit", logger=logger, visit_id=visit.id):
                await self.api.start_visit(visit.id, fix.coordinates)
            
            updated = visit.model_copy(update={
                "server_status": ServerStatus.IN_PROGRESS,
                "started_at": self.clock.now(),
            })
            logger.info(
                "Clocked in",
                visit_id=visit.id,
                location_degraded=fix.degraded,
            )
            self._publish(updated)
            return updated
    
    async def clock_out(self, visit: Visit, tasks: Optional[Iterable[Task]] = None) -> ClockOutResult:
        """
        Flush task states, then end the visit.
        
        Never raises for transport failures: task sync errors and a failed
        end-visit (rescued or not by force-complete) are reported through the
        result's outcome so the caregiver is never stuck on the screen.
        """
        return await self._submit(self._clock_out(visit, tasks), "clock_out", visit.id)
    
    async def _clock_out(self, visit: Visit, tasks: Optional[Iterable[Task]]) -> ClockOutResult:
        tasks = list(visit.tasks if tasks is None else tasks)
        
        with correlation_context(prefix="clockout"):
            task_outcomes = await self._flush_tasks(tasks)
            fix = await resolve_position(self.geolocation, self.geolocation_timeout)
            
            ended_via_force_complete = False
            try:
                with log_timing("end_visit", logger=logger, visit_id=visit.id):
                    await self.api.end_visit(visit.id, fix.coordinates)
            except TransportError as end_error:
                logger.warning(
                    "End visit failed, attempting force complete",
                    visit_id=visit.id,
                    error=str(end_error),
                )
                try:
                    with log_timing("force_complete_visit", logger=logger, visit_id=visit.id):
                        await self.api.update_visit_status(visit.id, ServerStatus.COMPLETED.value)
                    ended_via_force_complete = True
                except TransportError as force_error:
                    logger.error(
                        "Clock-out not confirmed by server",
                        visit_id=visit.id,
                        end_visit_error=str(end_error),
                        force_complete_error=str(force_error),
                    )
                    return ClockOutResult(
                        outcome=ClockOutOutcome.UNCONFIRMED,
                        visit=visit,
                        task_outcomes=task_outcomes,
                        location_degraded=fix.degraded,
                        warning=(
                            "Your clock-out could not be confirmed by the server. "
                            "It will be checked again on the next refresh."
                        ),
                    )
            
            updated = visit.model_copy(update={
                "server_status": ServerStatus.COMPLETED,
                "ended_at": self.clock.now(),
                "tasks": [t.model_copy() for t in tasks],
            })
            self._publish(updated)
            
            failed = [o.task_id for o in task_outcomes if not o.succeeded]
            if failed or ended_via_force_complete:
                outcome = ClockOutOutcome.DEGRADED
                warning = _degraded_warning(failed, ended_via_force_complete)
            else:
                outcome = ClockOutOutcome.COMPLETED
                warning = None
            
            logger.info(
                "Clocked out",
                visit_id=visit.id,
                outcome=outcome.value,
                failed_task_ids=failed,
                ended_via_force_complete=ended_via_force_complete,
                location_degraded=fix.degraded,
            )
            return ClockOutResult(
                outcome=outcome,
                visit=updated,
                task_outcomes=task_outcomes,
                ended_via_force_complete=ended_via_force_complete,
                location_degraded=fix.degraded,
                warning=warning,
            )
    
    async def _flush_tasks(self, tasks: list[Task]) -> list[TaskFlushOutcome]:
        """Push every task concurrently; one failure never stops its siblings."""
        results = await asyncio.gather(
            *(self._flush_task(task) for task in tasks),
            return_exceptions=True,
        )
        outcomes: list[TaskFlushOutcome] = []
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Task status update failed",
                    task_id=task.id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                outcomes.append(TaskFlushOutcome(task_id=task.id, succeeded=False, error=str(result)))
            else:
                outcomes.append(TaskFlushOutcome(task_id=task.id, succeeded=True))
        return outcomes
    
    async def _flush_task(self, task: Task) -> None:
        status = _TASK_WIRE_STATUS.get(task.completion_state)
        if status is None:
            raise ValueError(f"Task {task.id} has no completion state to send")
        reason = task.reason if task.completion_state == CompletionState.NOT_DONE else None
        await self.api.update_task_status(task.id, status, reason=reason)
    
    async def _submit(self, coro, operation: str, visit_id: str):
        """Run a transition as its own task so cancelling the caller cannot abort it."""
        task = asyncio.create_task(coro)
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.info("Caller went away, transition continues", operation=operation, visit_id=visit_id)
            task.add_done_callback(partial(_log_abandoned_result, operation, visit_id))
            raise
    
    def _publish(self, visit: Visit) -> None:
        if self.store is not None:
            self.store.upsert(visit)


def _log_abandoned_result(operation: str, visit_id: str, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Transition failed after its caller was cancelled",
            operation=operation,
            visit_id=visit_id,
            error=str(error),
            error_type=type(error).__name__,
        )


def _degraded_warning(failed_task_ids: list[str], ended_via_force_complete: bool) -> str:
    parts = []
    if ended_via_force_complete:
        parts.append("the visit was completed without recording your location")
    if failed_task_ids:
        parts.append(f"{len(failed_task_ids)} task update(s) did not sync")
    return "Clock-out saved, but " + " and ".join(parts) + "."
