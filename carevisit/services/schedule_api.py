"""Schedule API client - async REST wrapper that normalizes response shapes at the boundary."""

import asyncio
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from carevisit.models.schedule_record import ScheduleRecord
from carevisit.services.geolocation import Coordinates
from carevisit.utils.config import ScheduleConfig, require_api_base_url
from carevisit.utils.errors import ScheduleApiError, ScheduleTransportError
from carevisit.utils.logging import (
    get_structured_logger,
    log_timing,
    mask_sensitive_data,
)

logger = get_structured_logger(__name__)

TokenProvider = Callable[[], Optional[str]]

SCHEDULES_PATH = "/api/user/schedules"
TODAY_PATH = f"{SCHEDULES_PATH}/today"
UPCOMING_PATH = f"{SCHEDULES_PATH}/upcoming"
MISSED_PATH = f"{SCHEDULES_PATH}/missed"
COMPLETED_TODAY_PATH = f"{SCHEDULES_PATH}/completed/today"
TASKS_PATH = "/tasks"


def extract_schedule_list(payload: Any, endpoint: str = "") -> list[dict]:
    """
    Pull the list of schedule dicts out of any response shape the API uses.
    
    Accepts ``{"message": {"schedules": [...]}}``, ``{"schedules": [...]}``,
    a bare list, and ``{"schedules": null}`` (no results).
    """
    if isinstance(payload, list):
        return payload
    
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, dict) and isinstance(message.get("schedules"), list):
            return message["schedules"]
        if "schedules" in payload:
            schedules = payload["schedules"]
            if schedules is None:
                return []
            if isinstance(schedules, list):
                return schedules
    
    logger.warning(
        "Unexpected schedule list response format",
        endpoint=endpoint,
        payload_type=type(payload).__name__,
    )
    return []


def parse_schedule_records(items: list[Any], endpoint: str = "") -> list[ScheduleRecord]:
    """Validate raw schedule dicts, dropping (and logging) malformed entries."""
    records: list[ScheduleRecord] = []
    for item in items:
        try:
            records.append(ScheduleRecord.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Dropping malformed schedule record",
                endpoint=endpoint,
                schedule_id=item.get("id") if isinstance(item, dict) else None,
                error_count=e.error_count(),
            )
    return records


class ScheduleApiClient:
    """
    Async client for the caregiver schedule API.
    
    Authentication is delegated to ``token_provider``; a 401 surfaces as a
    plain ScheduleApiError and is never retried here.
    """
    
    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = require_api_base_url(base_url)
        self.token_provider = token_provider
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else ScheduleConfig.REQUEST_TIMEOUT_SECONDS
        )
    
    async def __aenter__(self) -> "ScheduleApiClient":
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
    
    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
    
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers
    
    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        with log_timing("schedule_api_request", logger=logger, method=method, endpoint=path):
            try:
                response = await self._client.request(method, url, json=json, headers=self._headers())
            except httpx.HTTPError as e:
                logger.error(
                    "Schedule API request failed",
                    method=method,
                    endpoint=path,
                    error=mask_sensitive_data(str(e)),
                )
                raise ScheduleTransportError(f"{method} {path} failed: {e}") from e
        
        if response.is_error:
            message = _error_message(response)
            logger.error(
                "Schedule API returned error status",
                method=method,
                endpoint=path,
                status_code=response.status_code,
                error=mask_sensitive_data(message),
            )
            raise ScheduleApiError(response.status_code, message, endpoint=path)
        
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ScheduleApiError(response.status_code, "Response body is not valid JSON", endpoint=path) from e
    
    async def _list(self, path: str) -> list[ScheduleRecord]:
        payload = await self._request("GET", path)
        records = parse_schedule_records(extract_schedule_list(payload, path), path)
        logger.debug("Fetched schedule list", endpoint=path, record_count=len(records))
        return records
    
    async def list_all(self) -> list[ScheduleRecord]:
        return await self._list(SCHEDULES_PATH)
    
    async def list_today(self) -> list[ScheduleRecord]:
        return await self._list(TODAY_PATH)
    
    async def list_upcoming(self) -> list[ScheduleRecord]:
        return await self._list(UPCOMING_PATH)
    
    async def list_missed(self) -> list[ScheduleRecord]:
        return await self._list(MISSED_PATH)
    
    async def list_completed_today(self) -> list[ScheduleRecord]:
        return await self._list(COMPLETED_TODAY_PATH)
    
    async def fetch_dashboard_records(self) -> list[ScheduleRecord]:
        """
        Fetch today's, upcoming, missed and completed-today lists concurrently.
        
        Records are de-duplicated by id; the first list that mentions a visit
        wins, in the order above.
        """
        lists = await asyncio.gather(
            self.list_today(),
            self.list_upcoming(),
            self.list_missed(),
            self.list_completed_today(),
        )
        seen: dict[str, ScheduleRecord] = {}
        for records in lists:
            for record in records:
                seen.setdefault(record.id, record)
        return list(seen.values())
    
    async def get_visit(self, visit_id: str) -> ScheduleRecord:
        path = f"{SCHEDULES_PATH}/{visit_id}"
        payload = await self._request("GET", path)
        try:
            record = ScheduleRecord.model_validate(payload)
        except ValidationError as e:
            raise ScheduleApiError(200, f"Malformed schedule record: {e.error_count()} errors", endpoint=path) from e
        if not record.tasks:
            logger.warning("Schedule has no tasks", schedule_id=visit_id)
        return record
    
    async def start_visit(self, visit_id: str, coordinates: Coordinates) -> dict:
        return await self._request(
            "POST", f"{SCHEDULES_PATH}/{visit_id}/start", json=coordinates.model_dump()
        )
    
    async def end_visit(self, visit_id: str, coordinates: Coordinates) -> dict:
        return await self._request(
            "POST", f"{SCHEDULES_PATH}/{visit_id}/end", json=coordinates.model_dump()
        )
    
    async def update_task_status(self, task_id: str, status: str, reason: Optional[str] = None) -> dict:
        body: dict[str, Any] = {"status": status}
        if reason:
            body["reason"] = reason
        return await self._request("POST", f"{TASKS_PATH}/{task_id}/update", json=body)
    
    async def update_visit_status(self, visit_id: str, status: str) -> dict:
        return await self._request(
            "PUT", f"{SCHEDULES_PATH}/{visit_id}/status", json={"status": status}
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP error! status: {response.status_code}"
