"""Best-effort geolocation for clock-in/clock-out."""

import asyncio
import math
from typing import Optional, Protocol
from pydantic import BaseModel, Field

from carevisit.utils.config import ScheduleConfig
from carevisit.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

EARTH_RADIUS_KM = 6371.0


class Coordinates(BaseModel):
    """Latitude/longitude pair sent with start/end visit calls."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# Recorded when the device cannot produce a fix
SENTINEL_COORDINATES = Coordinates(latitude=0.0, longitude=0.0)


class PositionFix(BaseModel):
    coordinates: Coordinates
    degraded: bool = False


class GeolocationProvider(Protocol):
    async def get_current_position(self) -> Coordinates:
        ...


async def resolve_position(
    provider: Optional[GeolocationProvider],
    timeout: Optional[float] = None,
) -> PositionFix:
    """
    Ask the provider for a position once.
    
    Location never blocks a transition: any provider failure or timeout
    yields the sentinel (0, 0) with ``degraded=True``.
    """
    if provider is None:
        logger.warning("No geolocation provider configured, using sentinel coordinates")
        return PositionFix(coordinates=SENTINEL_COORDINATES, degraded=True)
    
    if timeout is None:
        timeout = ScheduleConfig.GEOLOCATION_TIMEOUT_SECONDS
    
    try:
        coordinates = await asyncio.wait_for(provider.get_current_position(), timeout=timeout)
        return PositionFix(coordinates=coordinates)
    except asyncio.TimeoutError:
        logger.warning("Geolocation timed out, using sentinel coordinates", timeout_seconds=timeout)
    except Exception as e:
        logger.warning(
            "Geolocation failed, using sentinel coordinates",
            error=str(e),
            error_type=type(e).__name__,
        )
    return PositionFix(coordinates=SENTINEL_COORDINATES, degraded=True)


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance using the haversine formula."""
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_within_radius(a: Coordinates, b: Coordinates, max_km: float = 0.5) -> bool:
    """Informational proximity check; never used to gate a transition."""
    return distance_km(a, b) <= max_km
