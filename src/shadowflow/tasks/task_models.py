# src/shadowflow/tasks/task_models.py

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from .errors import DecodeError


class TaskFilter(StrEnum):
    """Which slice of the user's tasks the view shows."""

    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"

    def matches(self, task: Task) -> bool:
        if self is TaskFilter.ACTIVE:
            return not task.is_completed
        if self is TaskFilter.COMPLETED:
            return task.is_completed
        return True

    @property
    def heading(self) -> str:
        return {
            TaskFilter.ALL: "All Tasks",
            TaskFilter.ACTIVE: "Active Tasks",
            TaskFilter.COMPLETED: "Completed Tasks",
        }[self]

    @classmethod
    def parse(cls, raw: str | None) -> TaskFilter:
        if not raw:
            raise ValueError("filter is required")
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ValueError(f"unknown filter: {raw!r} (use all, active or completed)") from None


class PendingOp(StrEnum):
    """In-flight mutation marker. Never persisted."""

    COMPLETING = "completing"
    DELETING = "deleting"
    UPDATING = "updating"


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def from_wire(cls, raw: Any) -> ChangeKind:
        try:
            return cls(str(raw or "").strip().lower())
        except ValueError:
            raise DecodeError(f"unknown change event type: {raw!r}") from None


class FeedState(StrEnum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as sent by the API (trailing 'Z' allowed)."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    try:
        s = str(raw).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _opt_str(raw: Any) -> str | None:
    if raw is None:
        return None
    s = str(raw)
    return s if s.strip() else None


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    user_id: str
    title: str
    is_completed: bool = False

    title_enriched: str | None = None
    description_enriched: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_enriched(self) -> bool:
        return bool(self.title_enriched or self.description_enriched)

    def with_changes(self, **changes: Any) -> Task:
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Task:
        """Build a Task from an API/feed JSON row. Only `id` is mandatory."""
        if not isinstance(row, Mapping):
            raise DecodeError(f"task row must be an object, got {type(row).__name__}")
        task_id = row.get("id")
        if task_id is None or str(task_id).strip() == "":
            raise DecodeError("task row has no id")
        return cls(
            id=str(task_id),
            user_id=str(row.get("user_id") or ""),
            title=str(row.get("title") or ""),
            is_completed=bool(row.get("is_completed") or False),
            title_enriched=_opt_str(row.get("title_enriched")),
            description_enriched=_opt_str(row.get("description_enriched")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "title_enriched": self.title_enriched,
            "description_enriched": self.description_enriched,
            "is_completed": self.is_completed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """
    One row-level change pushed by the server.

    For insert/update `task` is the full new row. For delete only `task_id` is reliable.
    `old` is whatever the server sent as the previous row (often just the primary key).
    """

    kind: ChangeKind
    task_id: str
    task: Task | None = None
    old: dict[str, Any] = field(default_factory=dict)

    def old_is_completed(self) -> bool | None:
        raw = self.old.get("is_completed")
        return raw if isinstance(raw, bool) else None


@dataclass(frozen=True, slots=True)
class FeedStatusEvent:
    """Connection state change reported in-band on the change stream."""

    state: FeedState
    reason: str | None = None


FeedItem = ChangeEvent | FeedStatusEvent


@dataclass(frozen=True, slots=True)
class TaskView:
    """One rendered row: the task plus whatever mutations are in flight for it."""

    task: Task
    pending: frozenset[PendingOp] = frozenset()

    @property
    def is_processing(self) -> bool:
        return bool(self.pending)
