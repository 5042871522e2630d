"""Error handling utilities."""

from typing import Optional


class CareVisitError(Exception):
    """Base exception for the caregiver visit client."""
    pass


class ConfigurationError(CareVisitError):
    """Missing or invalid configuration."""
    pass


class TransportError(CareVisitError):
    """Remote schedule API could not complete a request."""
    pass


class ScheduleTransportError(TransportError):
    """Network-level failure talking to the schedule API."""
    pass


class ScheduleApiError(TransportError):
    """Schedule API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, endpoint: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"HTTP {status_code}: {message}")


class GeolocationError(CareVisitError):
    """Geolocation provider could not produce a position."""
    pass


class UnknownTaskError(CareVisitError, KeyError):
    """Task id is not part of the visit being clocked out."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(task_id)

    def __str__(self) -> str:
        return f"Unknown task: {self.task_id}"
