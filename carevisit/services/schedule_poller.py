"""Schedule poller - recurring refresh with visibility-driven pause/resume."""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from carevisit.utils.config import ScheduleConfig
from carevisit.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

RefreshFn = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[None]]


class PollerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class SchedulePoller:
    """
    Drive ``refresh`` on a fixed interval.
    
    Refreshes never overlap: one requested while another is in flight is
    skipped. Pausing cancels the loop (and any in-flight refresh, whose
    result is then never applied); resuming refreshes immediately.
    """
    
    def __init__(
        self,
        refresh: RefreshFn,
        interval_seconds: Optional[float] = None,
        sleep_fn: SleepFn = asyncio.sleep,
    ):
        self._refresh = refresh
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else ScheduleConfig.POLL_INTERVAL_SECONDS
        )
        self._sleep = sleep_fn
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Optional[object] = None
        self.state = PollerState.STOPPED
        self.refresh_count = 0
        self.skipped_count = 0
    
    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None
    
    def start(self) -> None:
        if self.state == PollerState.RUNNING:
            logger.debug("Schedule poller already running")
            return
        logger.info("Starting schedule poller", interval_seconds=self.interval_seconds)
        self.state = PollerState.RUNNING
        self._spawn()
    
    def pause(self) -> None:
        if self.state != PollerState.RUNNING:
            return
        logger.info("Pausing schedule poller")
        self.state = PollerState.PAUSED
        self._cancel()
    
    def resume(self) -> None:
        if self.state != PollerState.PAUSED:
            return
        logger.info("Resuming schedule poller")
        self.state = PollerState.RUNNING
        self._spawn()
    
    async def stop(self) -> None:
        if self.state == PollerState.STOPPED:
            return
        logger.info("Stopping schedule poller", refresh_count=self.refresh_count)
        self.state = PollerState.STOPPED
        task = self._cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
    
    def set_visible(self, visible: bool) -> None:
        """Hook for the host surface's visibility/foreground events."""
        if visible:
            self.resume()
        else:
            self.pause()
    
    async def refresh_now(self) -> bool:
        """Run one refresh unless one is already in flight. Returns whether it ran cleanly."""
        if self._in_flight is not None:
            self.skipped_count += 1
            logger.debug("Skipping refresh, previous one still in flight")
            return False
        
        owner = self._in_flight = object()
        try:
            await self._refresh()
            self.refresh_count += 1
            return True
        except Exception as e:
            logger.error(
                "Schedule refresh failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        finally:
            if self._in_flight is owner:
                self._in_flight = None
    
    async def _run(self) -> None:
        while True:
            await self.refresh_now()
            await self._sleep(self.interval_seconds)
    
    def _spawn(self) -> None:
        self._task = asyncio.create_task(self._run())
    
    def _cancel(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            # The cancelled refresh can no longer land; let the next one run
            self._in_flight = None
        return task
