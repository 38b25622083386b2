"""Client for the external session endpoint that records finished timer runs.

The endpoint speaks the time-sessions HTTP API:
    POST /api/time-sessions              {task_id, user_id, hourly_rate_usd} -> {"data": {"id": ...}}
    PUT  /api/time-sessions/{session_id} {action, user_id, session_notes}    -> {"data": {...}}

Calls are blocking ``requests`` calls pushed onto the event loop's default
executor so the loop (and the tick) never waits on the network.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import requests

from .errors import SessionEndpointError
from .logs import get_logger

logger = get_logger("sessions")


class SessionEndpoint(Protocol):
    async def start_session(self, task_id: str, user_id: str, hourly_rate: Optional[float]) -> str:
        """Register a run and return its session id."""

    async def end_session(self, session_id: str, user_id: str, action: str = "stop") -> None:
        """Close a previously registered run."""


class HttpSessionEndpoint:
    """SessionEndpoint over HTTP using requests."""

    def __init__(self, base_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests.Session()

    async def start_session(self, task_id: str, user_id: str, hourly_rate: Optional[float]) -> str:
        payload = {"task_id": task_id, "user_id": user_id, "hourly_rate_usd": hourly_rate}
        data = await self._call("POST", f"{self.base_url}/api/time-sessions", payload)
        try:
            return str(data["data"]["id"])
        except (KeyError, TypeError) as e:
            raise SessionEndpointError(f"Malformed start_session response: {data!r}") from e

    async def end_session(self, session_id: str, user_id: str, action: str = "stop") -> None:
        payload = {"action": action, "user_id": user_id}
        await self._call("PUT", f"{self.base_url}/api/time-sessions/{session_id}", payload)

    async def _call(self, method: str, url: str, payload: dict) -> dict:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._request, method, url, payload)

    def _request(self, method: str, url: str, payload: dict) -> dict:
        try:
            response = self._http.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise SessionEndpointError(f"{method} {url} timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise SessionEndpointError(f"{method} {url} connection refused") from e
        except requests.exceptions.RequestException as e:
            raise SessionEndpointError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise SessionEndpointError(f"{method} {url} -> {response.status_code} {detail}")

        try:
            return response.json()
        except ValueError as e:
            raise SessionEndpointError(f"{method} {url} returned non-JSON body") from e
