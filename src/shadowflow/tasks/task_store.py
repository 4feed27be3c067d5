# src/shadowflow/tasks/task_store.py

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone

from .task_models import Task, TaskFilter

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(task: Task) -> datetime:
    return task.created_at or _OLDEST


class TaskStore:
    """
    In-memory ordered collection of the signed-in user's tasks.

    Ordering: created_at descending (newest first). A task without created_at sorts last.

    Every operation is synchronous and total: unknown ids are no-ops for remove()
    and inserts for upsert(). Nothing in here raises.

    Only the Reconciler writes to the store.
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._order: list[str] = []
        self._by_id: dict[str, Task] = {}
        self.replace_all(tasks)

    # ---- low-level helpers ----

    def _insert_position(self, task: Task) -> int:
        # First slot whose task is not newer: ties land before existing equals.
        key = _sort_key(task)
        for i, tid in enumerate(self._order):
            if _sort_key(self._by_id[tid]) <= key:
                return i
        return len(self._order)

    # ---- public API ----

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Full resync: drop everything and take `tasks` (last duplicate wins)."""
        by_id: dict[str, Task] = {}
        for t in tasks:
            by_id[t.id] = t
        # sorted() is stable, so server order survives among equal timestamps.
        ordered = sorted(by_id.values(), key=_sort_key, reverse=True)
        self._by_id = {t.id: t for t in ordered}
        self._order = [t.id for t in ordered]
        logger.debug("TaskStore replaced: %d tasks", len(self._order))

    def upsert(self, task: Task) -> None:
        """Insert if absent, else overwrite in place (created_at never changes)."""
        if task.id in self._by_id:
            self._by_id[task.id] = task
            return
        pos = self._insert_position(task)
        self._order.insert(pos, task.id)
        self._by_id[task.id] = task

    def remove(self, task_id: str) -> bool:
        if task_id not in self._by_id:
            return False
        del self._by_id[task_id]
        self._order.remove(task_id)
        return True

    def project(self, task_filter: TaskFilter = TaskFilter.ALL) -> list[Task]:
        return [self._by_id[tid] for tid in self._order if task_filter.matches(self._by_id[tid])]

    def get(self, task_id: str) -> Task | None:
        return self._by_id.get(task_id)

    def clear(self) -> None:
        self._by_id.clear()
        self._order.clear()

    def ids(self) -> list[str]:
        return list(self._order)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_id

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.project(TaskFilter.ALL))
