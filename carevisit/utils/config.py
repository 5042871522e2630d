"""Client configuration read from environment variables."""

import os
from datetime import tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from carevisit.utils.errors import ConfigurationError


class ScheduleConfig:
    """Scheduling client settings."""
    
    API_BASE_URL = os.environ.get("CAREVISIT_API_BASE_URL", "").rstrip("/")
    REQUEST_TIMEOUT_SECONDS = float(os.environ.get("CAREVISIT_REQUEST_TIMEOUT_SECONDS", "10"))
    POLL_INTERVAL_SECONDS = float(os.environ.get("POLL_INTERVAL_SECONDS", "10"))
    GRACE_PERIOD_MINUTES = int(os.environ.get("GRACE_PERIOD_MINUTES", "5"))
    READY_WINDOW_MINUTES = int(os.environ.get("READY_WINDOW_MINUTES", "5"))
    # Display-only threshold for "starting soon" badges, not used for gating
    STARTING_SOON_MINUTES = int(os.environ.get("STARTING_SOON_MINUTES", "30"))
    GEOLOCATION_TIMEOUT_SECONDS = float(os.environ.get("GEOLOCATION_TIMEOUT_SECONDS", "10"))
    CAREGIVER_TIMEZONE = os.environ.get("CAREGIVER_TIMEZONE") or None


def require_api_base_url(base_url: Optional[str] = None) -> str:
    """Return the API base URL, failing loudly when none is configured."""
    url = (base_url or ScheduleConfig.API_BASE_URL or "").rstrip("/")
    if not url:
        raise ConfigurationError("CAREVISIT_API_BASE_URL must be set")
    return url


def get_caregiver_timezone(name: Optional[str] = None) -> Optional[tzinfo]:
    """
    Resolve the caregiver's configured IANA timezone.
    
    Returns None when none is configured, meaning the host zone, which
    callers look up at each use rather than pinning today's UTC offset.
    """
    name = name or ScheduleConfig.CAREGIVER_TIMEZONE
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown CAREGIVER_TIMEZONE: {name}") from e
