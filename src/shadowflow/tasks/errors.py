# src/shadowflow/tasks/errors.py

"""
Error taxonomy for task operations.

The gateway maps every HTTP outcome onto one of these, applies the matching
failure policy to the local view, then re-raises so the caller can show a message.
"""

from __future__ import annotations


class TaskError(Exception):
    """Base class for all task errors surfaced to callers."""

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class Unauthorized(TaskError):
    """Missing or rejected access token. No resync is attempted."""


class NotFound(TaskError):
    """Task vanished or is not owned by the caller. Authoritative: drop it locally."""


class TransportError(TaskError):
    """Network failure, timeout or unexpected server status. Triggers a full resync."""

    def __init__(
        self,
        message: str,
        *,
        task_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, task_id=task_id)
        self.status_code = status_code


class ValidationError(TaskError):
    """Rejected before any optimistic change (empty title, unknown task, ...)."""


class OperationInProgress(ValidationError):
    """The same kind of mutation is already in flight for this task."""


class DecodeError(ValueError):
    """Malformed task row or feed payload."""


def friendly_task_error_message(err: Exception) -> str:
    if isinstance(err, Unauthorized):
        return "You are not signed in (or your session expired). Set SHADOWFLOW_ACCESS_TOKEN and /reconnect."
    if isinstance(err, NotFound):
        return "That task no longer exists; it was removed from the list."
    if isinstance(err, TransportError):
        return "Network error. Please check your connection and try again. The list was refreshed."
    if isinstance(err, OperationInProgress):
        return "That task is still being saved. Wait a moment and try again."
    if isinstance(err, TaskError):
        return err.message
    return str(err).strip() or "Unexpected error."
