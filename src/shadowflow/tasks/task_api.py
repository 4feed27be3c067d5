# src/shadowflow/tasks/task_api.py

"""
HTTP client for the task CRUD API.

Every outcome is mapped onto the task error taxonomy so callers never see raw
httpx exceptions:
- 401/403             -> Unauthorized
- 404                 -> NotFound
- 400/422             -> ValidationError
- other non-2xx, network errors, timeouts, bad JSON -> TransportError
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import DecodeError, NotFound, TransportError, Unauthorized, ValidationError
from .task_models import Task

logger = logging.getLogger(__name__)


def _make_timeout_obj(timeout_s: float) -> httpx.Timeout:
    return httpx.Timeout(timeout_s, connect=min(5.0, timeout_s))


def _error_text(resp: httpx.Response) -> str:
    """Best-effort extraction of the `{error: "..."}` body."""
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:200] or resp.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return resp.reason_phrase


def _raise_for_status(resp: httpx.Response, *, task_id: str | None = None) -> None:
    if resp.is_success:
        return
    msg = _error_text(resp)
    code = resp.status_code
    if code in (401, 403):
        raise Unauthorized(msg or "Unauthorized", task_id=task_id)
    if code == 404:
        raise NotFound(msg or "Task not found", task_id=task_id)
    if code in (400, 422):
        raise ValidationError(msg or "Invalid request", task_id=task_id)
    raise TransportError(f"HTTP {code}: {msg}", task_id=task_id, status_code=code)


def _json(resp: httpx.Response, *, task_id: str | None = None) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise TransportError("Server returned invalid JSON", task_id=task_id, status_code=resp.status_code) from e


def _task_from_body(body: Any, *, task_id: str | None = None) -> Task:
    try:
        return Task.from_row(body)
    except DecodeError as e:
        raise TransportError(f"Server returned a malformed task: {e}", task_id=task_id) from e


class HttpTaskApi:
    """
    Async task API client.

    The underlying httpx.AsyncClient is created lazily and reused; call aclose() on shutdown.
    A custom `transport` can be injected (tests use httpx.MockTransport).
    """

    def __init__(
            self,
            base_url: str,
            *,
            timeout_seconds: float = 10.0,
            transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url.strip():
            raise RuntimeError("Task API base URL is not set. Set SHADOWFLOW_API_BASE_URL in your .env.")
        self._base_url = base_url.rstrip("/")
        self._timeout = _make_timeout_obj(timeout_seconds)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
            self,
            method: str,
            path: str,
            access_token: str,
            *,
            json: dict[str, Any] | None = None,
            task_id: str | None = None,
    ) -> httpx.Response:
        if not access_token:
            raise Unauthorized("No active session", task_id=task_id)
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            resp = await self._get_client().request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.info("Task API timeout: %s %s", method, path)
            raise TransportError(f"Request timed out: {method} {path}", task_id=task_id) from e
        except httpx.HTTPError as e:
            logger.info("Task API network error: %s %s (%s)", method, path, e.__class__.__name__)
            raise TransportError(f"Network error: {e.__class__.__name__}", task_id=task_id) from e

        logger.debug("Task API %s %s -> %s", method, path, resp.status_code)
        _raise_for_status(resp, task_id=task_id)
        return resp

    # ---- public API ----

    async def list_tasks(self, access_token: str) -> list[Task]:
        resp = await self._request("GET", "/tasks", access_token)
        body = _json(resp)
        if not isinstance(body, list):
            raise TransportError("Expected a JSON array of tasks", status_code=resp.status_code)

        tasks: list[Task] = []
        for row in body:
            try:
                tasks.append(Task.from_row(row))
            except DecodeError:
                logger.warning("Skipping malformed task row from GET /tasks: %r", row)
        return tasks

    async def create_task(self, access_token: str, title: str) -> Task:
        resp = await self._request("POST", "/tasks", access_token, json={"title": title})
        return _task_from_body(_json(resp))

    async def update_task(
            self,
            access_token: str,
            task_id: str,
            *,
            title: str | None = None,
            is_completed: bool | None = None,
    ) -> Task:
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if is_completed is not None:
            payload["is_completed"] = is_completed
        if not payload:
            raise ValidationError("Nothing to update", task_id=task_id)

        resp = await self._request("PUT", f"/tasks/{task_id}", access_token, json=payload, task_id=task_id)
        return _task_from_body(_json(resp, task_id=task_id), task_id=task_id)

    async def delete_task(self, access_token: str, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}", access_token, task_id=task_id)
