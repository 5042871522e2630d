"""Shared pytest fixtures and configuration."""

import os
import time
import pytest
from unittest.mock import AsyncMock
from datetime import datetime, timezone
from freezegun import freeze_time

# Set test environment variables before any carevisit module reads them
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CAREVISIT_API_BASE_URL", "https://care.test")
os.environ.setdefault("CAREGIVER_TIMEZONE", "UTC")
os.environ.setdefault("GRACE_PERIOD_MINUTES", "5")
os.environ.setdefault("READY_WINDOW_MINUTES", "5")
os.environ.setdefault("POLL_INTERVAL_SECONDS", "10")
os.environ.setdefault("LOG_FORMAT", "text")

NOW = datetime(2024, 12, 9, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Fixed reference instant used across scenarios."""
    return NOW


@pytest.fixture
def clock():
    """Settable clock pinned to NOW."""
    from tests.utils.helpers import FixedClock
    
    return FixedClock(NOW)


@pytest.fixture
def mock_visit_api():
    """Schedule API double with every transition call succeeding."""
    api = AsyncMock()
    api.start_visit = AsyncMock(return_value={"message": "Visit started"})
    api.end_visit = AsyncMock(return_value={"message": "Visit ended"})
    api.update_task_status = AsyncMock(return_value={"message": "Task updated"})
    api.update_visit_status = AsyncMock(return_value={"message": "Status updated"})
    return api


@pytest.fixture
def store(clock):
    """Empty schedule store on the fixed clock, UTC day boundaries."""
    from carevisit.services.schedule_store import ScheduleStore
    
    return ScheduleStore(clock=clock, tz=timezone.utc)


@pytest.fixture
def sample_schedule_record():
    """Raw schedule API record for a visit at NOW + 10 minutes."""
    from tests.utils.factories import create_schedule_record_data
    
    return create_schedule_record_data(
        schedule_id="101",
        shift_time="2024-12-09T12:10:00Z",
        status="scheduled",
    )


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time(NOW) as frozen_time:
        yield frozen_time


@pytest.fixture
def host_in_new_york(monkeypatch):
    """Run with the host's local zone set to America/New_York."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
