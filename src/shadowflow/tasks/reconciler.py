# src/shadowflow/tasks/reconciler.py

"""
Reconciler: the only writer of the TaskStore.

Two sources feed it:
- local intents from the MutationGateway (optimistic rename/toggle/delete, confirmed create)
- remote change events from the ChangeFeedSubscriber, via the single consumer loop run()

Every apply_* method is synchronous, so under asyncio no two reconciliation steps
can interleave. The only awaits are in resync()/set_filter() (the GET /tasks call),
and a sequence number makes sure only the newest resync result is ever applied.

Membership rule: the store only ever holds tasks matching the active filter, so
"was in the view" is simply "is in the store".
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone

from ..core.ports import TaskApi
from ..core.session import SessionContext
from .errors import TransportError, Unauthorized
from .task_models import (
    ChangeEvent,
    ChangeKind,
    FeedItem,
    FeedStatusEvent,
    PendingOp,
    Task,
    TaskFilter,
    TaskView,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ChangeEvent], None]
StatusHandler = Callable[[FeedStatusEvent], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reconciler:
    def __init__(
            self,
            context: SessionContext,
            api: TaskApi,
            *,
            store: TaskStore | None = None,
            task_filter: TaskFilter = TaskFilter.ALL,
    ) -> None:
        self._context = context
        self._api = api
        self._store = store if store is not None else TaskStore()
        self._filter = task_filter
        self._pending: dict[str, set[PendingOp]] = {}
        self._resync_seq = 0
        # task_id -> latest remote event seen while a resync is in flight.
        self._journal: dict[str, ChangeEvent] | None = None
        self._listeners: list[ChangeListener] = []

        # Store may lag the server (feed down, or last resync failed).
        self.stale = False
        self.loading = False

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def task_filter(self) -> TaskFilter:
        return self._filter

    def add_listener(self, listener: ChangeListener) -> None:
        """Called after a remote event changed the visible list."""
        self._listeners.append(listener)

    def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Change listener failed for task_id=%s", event.task_id)

    # ---- pending-operation flags ----

    def mark_pending(self, task_id: str, op: PendingOp) -> bool:
        """Set a flag; False if the same kind is already in flight for this task."""
        ops = self._pending.setdefault(task_id, set())
        if op in ops:
            return False
        ops.add(op)
        return True

    def clear_pending(self, task_id: str, op: PendingOp) -> None:
        ops = self._pending.get(task_id)
        if not ops:
            return
        ops.discard(op)
        if not ops:
            del self._pending[task_id]

    def pending_for(self, task_id: str) -> frozenset[PendingOp]:
        return frozenset(self._pending.get(task_id, ()))

    def is_pending(self, task_id: str, op: PendingOp | None = None) -> bool:
        ops = self._pending.get(task_id)
        if not ops:
            return False
        return op is None or op in ops

    @property
    def pending_count(self) -> int:
        return sum(len(ops) for ops in self._pending.values())

    # ---- projection ----

    def view(self) -> list[TaskView]:
        return [TaskView(task=t, pending=self.pending_for(t.id)) for t in self._store.project(self._filter)]

    def _place(self, task: Task) -> None:
        """Put `task` in the store if it belongs to the view, otherwise make sure it is gone."""
        if self._filter.matches(task):
            self._store.upsert(task)
        else:
            self._store.remove(task.id)

    # ---- local intents ----

    def apply_local_create(self, task: Task) -> bool:
        """Server-confirmed create. Upsert dedups against a remote insert that raced ahead."""
        if not self._filter.matches(task):
            logger.debug("Created task %s is outside filter=%s; not shown", task.id, self._filter.value)
            return False
        self._store.upsert(task)
        return True

    def apply_local_update(
            self,
            task_id: str,
            *,
            title: str | None = None,
            is_completed: bool | None = None,
    ) -> Task | None:
        """
        Optimistic rename/toggle. Returns the previous record (None if the task is not
        in the view, in which case nothing changes).

        A toggle under Active/Completed moves the task out of the view right away.
        """
        current = self._store.get(task_id)
        if current is None:
            return None

        changes: dict[str, object] = {"updated_at": _utcnow()}
        if title is not None:
            changes["title"] = title
        if is_completed is not None:
            changes["is_completed"] = is_completed

        self._place(current.with_changes(**changes))
        return current

    def apply_local_delete(self, task_id: str) -> Task | None:
        """Optimistic removal. Returns the removed record, if any."""
        current = self._store.get(task_id)
        self._store.remove(task_id)
        return current

    def restore_local(self, previous: Task) -> None:
        """
        Undo an optimistic change from the pre-mutation record.

        Only used when the server could not be asked for the truth (no valid token).
        Every other failure goes through resync().
        """
        self._place(previous)

    def apply_not_found(self, task_id: str) -> None:
        """The server says the task is gone (or not ours): authoritative removal."""
        if self._store.remove(task_id):
            logger.info("Task %s not found on server; removed from view", task_id)

    # ---- remote events ----

    def apply_remote(self, event: ChangeEvent) -> bool:
        """
        Apply one change-feed event. Returns True if the visible list changed.

        insert: membership-checked, upsert (dedups a locally-created twin)
        update: (in->in) overwrite, (out->in) insert, (in->out) remove, (out->out) ignore
        delete: unconditional removal

        While a resync is in flight the event is also journaled, so it can be replayed
        over the (possibly older) snapshot that resync is about to install.
        """
        if self._journal is not None:
            self._journal[event.task_id] = event

        changed = self._apply_event(event)
        if changed:
            logger.debug("Applied remote %s for task %s", event.kind.value, event.task_id)
            self._notify(event)
        return changed

    def _apply_event(self, event: ChangeEvent) -> bool:
        if event.kind is ChangeKind.DELETE:
            return self._store.remove(event.task_id)

        task = event.task
        if task is None:
            return False
        if self.is_pending(task.id, PendingOp.DELETING):
            # Our delete is in flight; its outcome (or the follow-up resync) decides.
            logger.debug("Ignoring remote %s for task %s being deleted", event.kind.value, task.id)
            return False

        was_in = task.id in self._store
        now_in = self._filter.matches(task)

        if event.kind is ChangeKind.UPDATE:
            old_done = event.old_is_completed()
            if old_done is not None and was_in != self._filter.matches(task.with_changes(is_completed=old_done)):
                logger.debug("Remote update for %s: old row disagrees with local view", task.id)

        if now_in:
            self._store.upsert(task)
            return True
        if was_in:
            self._store.remove(task.id)
            return True
        return False

    # ---- resync ----

    async def resync(self, reason: str = "") -> bool:
        """
        Replace the store with a fresh GET /tasks (filtered to the active view).

        Remote events applied while the fetch is in flight are replayed over the
        snapshot, latest event per task, so a delete or insert seen mid-fetch survives.

        Returns False if the fetch failed (store untouched, marked stale) or a newer
        resync started meanwhile. Unauthorized propagates.
        """
        self._resync_seq += 1
        seq = self._resync_seq
        task_filter = self._filter
        self._journal = {}

        token = await self._context.access_token()
        if not token:
            if seq == self._resync_seq:
                self._journal = None
            raise Unauthorized("No active session")

        logger.info("Resync started (%s) filter=%s", reason or "manual", task_filter.value)
        self.loading = True
        try:
            tasks = await self._api.list_tasks(token)
        except TransportError as e:
            if seq == self._resync_seq:
                self.stale = True
                self._journal = None
            logger.warning("Resync failed (%s): %s", reason or "manual", e.message)
            return False
        except BaseException:
            if seq == self._resync_seq:
                self._journal = None
            raise
        finally:
            if seq == self._resync_seq:
                self.loading = False

        if seq != self._resync_seq:
            logger.debug("Discarding resync #%d result; #%d is newer", seq, self._resync_seq)
            return False

        journal, self._journal = self._journal or {}, None

        # Tasks mid-delete stay hidden; a failed delete resyncs again once the flag is cleared.
        self._store.replace_all(
            t for t in tasks
            if task_filter.matches(t) and not self.is_pending(t.id, PendingOp.DELETING)
        )
        for event in journal.values():
            self._apply_event(event)

        self.stale = False
        logger.info(
            "Resync done: %d tasks in view (%d fetched, %d replayed)",
            len(self._store),
            len(tasks),
            len(journal),
        )
        return True

    async def set_filter(self, task_filter: TaskFilter) -> bool:
        """Switch the view filter: fresh full fetch, no local re-filter of cached rows."""
        self._filter = task_filter
        self._store.clear()
        return await self.resync(f"filter={task_filter.value}")

    def discard(self) -> None:
        """Forget everything (session change). Any in-flight resync result is dropped."""
        self._resync_seq += 1
        self._journal = None
        self._store.clear()
        self._pending.clear()
        self.stale = False
        self.loading = False

    # ---- feed consumer ----

    async def run(self, events: AsyncIterator[FeedItem], on_status: StatusHandler | None = None) -> None:
        """Single consumer loop for the change feed. Returns when the stream ends."""
        async for item in events:
            if isinstance(item, FeedStatusEvent):
                if on_status is not None:
                    try:
                        await on_status(item)
                    except Exception:
                        logger.exception("Feed status handler failed (state=%s)", item.state.value)
                continue

            try:
                self.apply_remote(item)
            except Exception:
                logger.exception("Failed to apply remote %s for task %s", item.kind.value, item.task_id)
