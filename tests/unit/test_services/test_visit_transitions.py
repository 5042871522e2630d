"""Tests for the visit transition executor."""

import asyncio
import logging
import pytest
from unittest.mock import AsyncMock

from carevisit.models.transition import ClockOutOutcome
from carevisit.models.visit import CompletionState, ServerStatus
from carevisit.services.clock_gate import can_clock_in
from carevisit.services.geolocation import SENTINEL_COORDINATES, Coordinates
from carevisit.services.status_reconciler import build_visits
from carevisit.services.visit_transitions import VisitTransitionExecutor
from carevisit.utils.errors import ScheduleApiError, ScheduleTransportError
from tests.utils.factories import create_schedule_record_data, make_task, make_visit
from tests.utils.helpers import settle

HOME = Coordinates(latitude=40.0, longitude=-75.0)


@pytest.fixture
def gps():
    provider = AsyncMock()
    provider.get_current_position = AsyncMock(return_value=HOME)
    return provider


@pytest.fixture
def executor(mock_visit_api, gps, clock, store):
    return VisitTransitionExecutor(mock_visit_api, geolocation=gps, clock=clock, store=store)


def addressed_visit(visit_id="v1"):
    return make_visit(
        visit_id,
        offset_minutes=-30,
        status=ServerStatus.IN_PROGRESS,
        tasks=[
            make_task(f"{visit_id}-t1", CompletionState.DONE),
            make_task(f"{visit_id}-t2", CompletionState.NOT_DONE, reason="Client declined"),
        ],
    )


class TestClockIn:
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clock_in_updates_visit_after_server_confirms(self, executor, mock_visit_api, store, now):
        """Test that clock-in updates the visit only after the server confirms."""
        visit = make_visit(offset_minutes=10)
        
        updated = await executor.clock_in(visit)
        
        mock_visit_api.start_visit.assert_awaited_once_with("v1", HOME)
        assert updated.server_status == ServerStatus.IN_PROGRESS
        assert updated.started_at == now
        assert visit.server_status == ServerStatus.SCHEDULED
        assert store.get("v1") == updated
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clock_in_failure_propagates_and_leaves_state(self, executor, mock_visit_api, store):
        """Test that a failed clock-in raises and leaves the visit unchanged."""
        mock_visit_api.start_visit.side_effect = ScheduleApiError(500, "boom")
        visit = make_visit(offset_minutes=10)
        
        with pytest.raises(ScheduleApiError):
            await executor.clock_in(visit)
        
        assert visit.server_status == ServerStatus.SCHEDULED
        assert visit.started_at is None
        assert store.get("v1") is None
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clock_in_uses_sentinel_when_location_unavailable(self, executor, mock_visit_api, gps):
        """Test clock-in with the sentinel position when GPS fails."""
        gps.get_current_position.side_effect = RuntimeError("denied")
        
        updated = await executor.clock_in(make_visit(offset_minutes=-2))
        
        mock_visit_api.start_visit.assert_awaited_once_with("v1", SENTINEL_COORDINATES)
        assert updated.server_status == ServerStatus.IN_PROGRESS


class TestClockOut:
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clock_out_flushes_tasks_then_ends_visit(self, executor, mock_visit_api, store, now):
        """Test that clock-out flushes every task then ends the visit."""
        visit = addressed_visit()
        
        result = await executor.clock_out(visit)
        
        assert result.outcome == ClockOutOutcome.COMPLETED
        assert result.warning is None
        assert result.confirmed
        mock_visit_api.update_task_status.assert_any_await("v1-t1", "completed", reason=None)
        mock_visit_api.update_task_status.assert_any_await("v1-t2", "not_completed", reason="Client declined")
        mock_visit_api.end_visit.assert_awaited_once_with("v1", HOME)
        mock_visit_api.update_visit_status.assert_not_awaited()
        assert result.visit.server_status == ServerStatus.COMPLETED
        assert result.visit.ended_at == now
        assert store.get("v1").server_status == ServerStatus.COMPLETED
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_clock_out_uses_ledger_tasks_when_given(self, executor, mock_visit_api):
        """Test that clock-out sends the caregiver's edited tasks."""
        visit = make_visit(status=ServerStatus.IN_PROGRESS)
        edited = [make_task("v1-t1", CompletionState.DONE)]
        
        result = await executor.clock_out(visit, edited)
        
        mock_visit_api.update_task_status.assert_awaited_once_with("v1-t1", "completed", reason=None)
        assert [t.completion_state for t in result.visit.tasks] == [CompletionState.DONE]
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_task_failure_still_ends_visit(self, executor, mock_visit_api):
        """Test that one failed task update does not block clock-out."""
        async def update(task_id, status, reason=None):
            if task_id == "v1-t1":
                raise ScheduleTransportError("timeout")
            return {}
        
        mock_visit_api.update_task_status.side_effect = update
        
        result = await executor.clock_out(addressed_visit())
        
        assert mock_visit_api.update_task_status.await_count == 2
        mock_visit_api.end_visit.assert_awaited_once()
        assert result.outcome == ClockOutOutcome.DEGRADED
        assert result.failed_task_ids == ["v1-t1"]
        assert "1 task update(s) did not sync" in result.warning
        assert result.visit.server_status == ServerStatus.COMPLETED
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_task_updates_run_concurrently(self, executor, mock_visit_api):
        """Test that task updates are sent concurrently."""
        started = []
        release = asyncio.Event()
        
        async def update(task_id, status, reason=None):
            started.append(task_id)
            await release.wait()
            return {}
        
        mock_visit_api.update_task_status.side_effect = update
        pending = asyncio.create_task(executor.clock_out(addressed_visit()))
        await settle(10)
        
        assert sorted(started) == ["v1-t1", "v1-t2"]
        mock_visit_api.end_visit.assert_not_awaited()
        
        release.set()
        result = await pending
        assert result.outcome == ClockOutOutcome.COMPLETED
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_scenario_d_end_visit_fails_force_complete_succeeds(self, executor, mock_visit_api, store):
        """Test the force-complete fallback when end-visit fails."""
        mock_visit_api.end_visit.side_effect = ScheduleApiError(500, "Internal error")
        
        result = await executor.clock_out(addressed_visit())
        
        mock_visit_api.update_visit_status.assert_awaited_once_with("v1", "completed")
        assert result.outcome == ClockOutOutcome.DEGRADED
        assert result.ended_via_force_complete
        assert "without recording your location" in result.warning
        assert result.visit.server_status == ServerStatus.COMPLETED
        assert store.get("v1").server_status == ServerStatus.COMPLETED
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_both_end_paths_fail_is_unconfirmed(self, executor, mock_visit_api, store):
        """Test the unconfirmed outcome when both end paths fail."""
        mock_visit_api.end_visit.side_effect = ScheduleTransportError("offline")
        mock_visit_api.update_visit_status.side_effect = ScheduleTransportError("offline")
        visit = addressed_visit()
        
        result = await executor.clock_out(visit)
        
        assert result.outcome == ClockOutOutcome.UNCONFIRMED
        assert not result.confirmed
        assert result.visit.server_status == ServerStatus.IN_PROGRESS
        assert result.visit.ended_at is None
        assert result.warning
        assert store.get("v1") is None
        mock_visit_api.update_visit_status.assert_awaited_once()
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unset_task_is_reported_not_sent(self, executor, mock_visit_api):
        """Test that an unset task is reported instead of sent."""
        visit = make_visit(status=ServerStatus.IN_PROGRESS, tasks=[make_task("v1-t1")])
        
        result = await executor.clock_out(visit)
        
        mock_visit_api.update_task_status.assert_not_awaited()
        assert result.failed_task_ids == ["v1-t1"]
        assert result.outcome == ClockOutOutcome.DEGRADED
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_location_failure_marks_result(self, executor, mock_visit_api, gps):
        """Test that a missing GPS fix is flagged on the result."""
        gps.get_current_position.side_effect = RuntimeError("denied")
        
        result = await executor.clock_out(addressed_visit())
        
        mock_visit_api.end_visit.assert_awaited_once_with("v1", SENTINEL_COORDINATES)
        assert result.location_degraded
        assert result.outcome == ClockOutOutcome.COMPLETED
    
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_clock_out(self, executor, mock_visit_api, store):
        """Test that a cancelled caller does not abort a submitted clock-out."""
        release = asyncio.Event()
        
        async def update(task_id, status, reason=None):
            await release.wait()
            return {}
        
        mock_visit_api.update_task_status.side_effect = update
        caller = asyncio.create_task(executor.clock_out(addressed_visit()))
        await settle(10)
        
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        
        release.set()
        for _ in range(50):
            if store.get("v1") is not None:
                break
            await asyncio.sleep(0)
        
        mock_visit_api.end_visit.assert_awaited_once()
        assert store.get("v1").server_status == ServerStatus.COMPLETED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_poll_started_before_clock_in_does_not_undo_it(executor, store):
    """Test that a confirmed clock-in survives a poll that began before it."""
    record = create_schedule_record_data(schedule_id="v1", shift_time="2024-12-09T12:10:00Z")
    store.commit_poll(store.begin_poll(), build_visits([record]))
    token = store.begin_poll()
    
    await executor.clock_in(store.get("v1"))
    applied = store.commit_poll(token, build_visits([record]))
    
    assert applied is False
    assert store.get("v1").server_status == ServerStatus.IN_PROGRESS
    assert store.active().id == "v1"
    assert not can_clock_in(store.get("v1"), store.clock.now())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failure_after_caller_cancelled_is_logged(executor, mock_visit_api, store, caplog):
    """Test that a transition failing after its caller left is logged, not lost."""
    release = asyncio.Event()
    
    async def start(visit_id, coordinates):
        await release.wait()
        raise ScheduleApiError(500, "Internal error")
    
    mock_visit_api.start_visit.side_effect = start
    caller = asyncio.create_task(executor.clock_in(make_visit(offset_minutes=5)))
    await settle(10)
    
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller
    
    with caplog.at_level(logging.ERROR, logger="carevisit.services.visit_transitions"):
        release.set()
        await settle(10)
    
    failures = [r for r in caplog.records if r.getMessage() == "Transition failed after its caller was cancelled"]
    assert len(failures) == 1
    assert failures[0].operation == "clock_in"
    assert failures[0].error_type == "ScheduleApiError"
    assert not executor._detached
    assert store.get("v1") is None
