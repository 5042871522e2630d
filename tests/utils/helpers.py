"""Test helper functions."""

import asyncio
import json
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import httpx


class FixedClock:
    """Clock that only moves when told to."""
    
    def __init__(self, current: datetime):
        self.current = current
    
    def now(self) -> datetime:
        return self.current
    
    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class ManualSleeper:
    """
    Fake sleep that blocks until the test calls ``wake()``.
    
    Keeps poller loops from spinning while letting tests step them one
    interval at a time.
    """
    
    def __init__(self):
        self.calls: list[float] = []
        self._event = asyncio.Event()
    
    async def sleep(self, seconds: float) -> None:
        self.calls.append(seconds)
        await self._event.wait()
        self._event.clear()
    
    def wake(self) -> None:
        self._event.set()


async def settle(rounds: int = 5) -> None:
    """Let pending tasks run a few event loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode(), headers={"Content-Type": "application/json"})


def create_mock_transport(
    routes: Dict[tuple[str, str], Any],
    recorder: Optional[list] = None,
) -> httpx.MockTransport:
    """
    Build an httpx transport answering ``(METHOD, path)`` routes.
    
    A route value may be a payload (200 JSON), an ``httpx.Response``, or a
    callable taking the request. Unknown routes return 404.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        if recorder is not None:
            recorder.append(request)
        route = routes.get((request.method, request.url.path))
        if route is None:
            return json_response({"error": "not found"}, status_code=404)
        if isinstance(route, httpx.Response):
            return route
        if callable(route):
            return route(request)
        return json_response(route)
    
    return httpx.MockTransport(handler)


def create_api_client(routes: Dict[tuple[str, str], Any], recorder: Optional[list] = None, token: Optional[str] = "test-token"):
    from carevisit.services.schedule_api import ScheduleApiClient
    
    http_client = httpx.AsyncClient(transport=create_mock_transport(routes, recorder))
    return ScheduleApiClient(
        base_url="https://care.test",
        token_provider=(lambda: token),
        http_client=http_client,
    )
