# src/shadowflow/tasks/mutation_gateway.py

"""
Mutation gateway: every user-initiated task change goes through here.

    validate -> access token -> pending flag -> optimistic apply (Reconciler) -> HTTP
    success: clear flag (the server's copy is NOT written back; the store keeps its state)
    failure: clear flag, then
        Unauthorized    -> undo from the pre-mutation record, no resync
        NotFound        -> drop the task locally
        anything else   -> full resync from GET /tasks
    and re-raise the typed error for the caller to show.

Create is the exception: it is not optimistic. It waits for the server-assigned id
and only then inserts, so there is never a placeholder to reconcile.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..core.ports import TaskApi
from ..core.session import SessionContext
from .errors import NotFound, OperationInProgress, TaskError, TransportError, Unauthorized, ValidationError
from .reconciler import Reconciler
from .task_models import PendingOp, Task

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_TITLE_LENGTH = 200


class MutationGateway:
    def __init__(
            self,
            context: SessionContext,
            api: TaskApi,
            reconciler: Reconciler,
            *,
            max_title_length: int = DEFAULT_MAX_TITLE_LENGTH,
    ) -> None:
        self._context = context
        self._api = api
        self._reconciler = reconciler
        self._max_title_length = max_title_length

    # ---- helpers ----

    def _clean_title(self, title: str | None, task_id: str | None = None) -> str:
        clean = (title or "").strip()
        if not clean:
            raise ValidationError("Task title is required", task_id=task_id)
        if len(clean) > self._max_title_length:
            raise ValidationError("Task title is too long", task_id=task_id)
        return clean

    async def _token(self, task_id: str | None = None) -> str:
        token = await self._context.access_token()
        if not token:
            raise Unauthorized("No active session", task_id=task_id)
        return token

    async def _resync_after_failure(self, err: TaskError) -> None:
        try:
            ok = await self._reconciler.resync(f"{err.__class__.__name__} on task {err.task_id or '-'}")
        except TaskError as e:
            logger.warning("Resync after failed mutation also failed: %s", e.message)
            self._reconciler.stale = True
            return
        if not ok:
            logger.warning("Resync after failed mutation did not apply; view may be stale")

    async def _handle_failure(self, err: TaskError, task_id: str, previous: Task | None) -> None:
        if isinstance(err, Unauthorized):
            if previous is not None:
                self._reconciler.restore_local(previous)
            return
        if isinstance(err, NotFound):
            self._reconciler.apply_not_found(task_id)
            return
        await self._resync_after_failure(err)

    async def _run(
            self,
            task_id: str,
            op: PendingOp,
            optimistic: Callable[[], Task | None],
            call: Callable[[str], Awaitable[T]],
    ) -> T:
        token = await self._token(task_id)

        # No awaits from here to the HTTP call: check, flag and apply happen atomically.
        if task_id not in self._reconciler.store:
            raise ValidationError("Task is not in the current list", task_id=task_id)
        if not self._reconciler.mark_pending(task_id, op):
            raise OperationInProgress(f"Task is already {op.value}", task_id=task_id)

        previous: Task | None = None
        try:
            previous = optimistic()
            result = await call(token)
        except TaskError as e:
            self._reconciler.clear_pending(task_id, op)
            logger.info("Mutation %s failed task_id=%s: %s", op.value, task_id, e.message)
            await self._handle_failure(e, task_id, previous)
            raise
        except BaseException:
            self._reconciler.clear_pending(task_id, op)
            raise

        self._reconciler.clear_pending(task_id, op)
        logger.debug("Mutation %s confirmed task_id=%s", op.value, task_id)
        return result

    # ---- public API ----

    async def create_task(self, title: str) -> Task:
        clean = self._clean_title(title)
        token = await self._token()
        try:
            task = await self._api.create_task(token, clean)
        except (TransportError, ValidationError) as e:
            # A timed-out create may still have landed server-side.
            logger.info("Create failed: %s", e.message)
            if isinstance(e, TransportError):
                await self._resync_after_failure(e)
            raise

        self._reconciler.apply_local_create(task)
        logger.info("Task created id=%s title=%r", task.id, task.title)
        return task

    async def rename_task(self, task_id: str, title: str) -> Task:
        clean = self._clean_title(title, task_id)
        return await self._run(
            task_id,
            PendingOp.UPDATING,
            lambda: self._reconciler.apply_local_update(task_id, title=clean),
            lambda token: self._api.update_task(token, task_id, title=clean),
        )

    async def set_completed(self, task_id: str, completed: bool) -> Task:
        return await self._run(
            task_id,
            PendingOp.COMPLETING,
            lambda: self._reconciler.apply_local_update(task_id, is_completed=completed),
            lambda token: self._api.update_task(token, task_id, is_completed=completed),
        )

    async def toggle_completed(self, task_id: str) -> Task:
        current = self._reconciler.store.get(task_id)
        if current is None:
            raise ValidationError("Task is not in the current list", task_id=task_id)
        return await self.set_completed(task_id, not current.is_completed)

    async def delete_task(self, task_id: str) -> None:
        await self._run(
            task_id,
            PendingOp.DELETING,
            lambda: self._reconciler.apply_local_delete(task_id),
            lambda token: self._api.delete_task(token, task_id),
        )
        logger.info("Task deleted id=%s", task_id)
