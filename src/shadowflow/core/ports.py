# src/shadowflow/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the HTTP API, the realtime transport and the identity provider swappable
and makes testing easier.
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any, Protocol

from ..tasks.task_models import Task

ChangePayload = Mapping[str, Any]
# Normalised feed payload: {"eventType": "INSERT|UPDATE|DELETE", "new": {...}, "old": {...}}.


class SessionProvider(Protocol):
    """Identity capability: who is signed in and which bearer token to send."""

    def current_user_id(self) -> str | None: ...
    def access_token(self) -> Awaitable[str | None]: ...


class TaskApi(Protocol):
    """REST-ish task CRUD API. Every call carries the caller's bearer token."""

    def list_tasks(self, access_token: str) -> Awaitable[list[Task]]: ...
    def create_task(self, access_token: str, title: str) -> Awaitable[Task]: ...
    def update_task(
            self,
            access_token: str,
            task_id: str,
            *,
            title: str | None = None,
            is_completed: bool | None = None,
    ) -> Awaitable[Task]: ...
    def delete_task(self, access_token: str, task_id: str) -> Awaitable[None]: ...


class FeedTransport(Protocol):
    """
    Server-push transport for row-level task changes.

    connect() subscribes to every change for one user. changes() yields normalised
    payloads until the connection drops (raises TransportError) or close() is called
    (the iterator simply ends).
    """

    def connect(self, *, user_id: str, access_token: str | None) -> Awaitable[None]: ...
    def changes(self) -> AsyncIterator[ChangePayload]: ...
    def close(self) -> Awaitable[None]: ...


FeedTransportFactory = Callable[[], FeedTransport]
