# src/shadowflow/tasks/session.py

"""
TaskSession: lifecycle owner for one signed-in user's task view.

It wires Store, Reconciler, ChangeFeedSubscriber and MutationGateway around one
explicit SessionContext and is the only place that reopens the change feed:
- start()              subscribe, initial fetch, start the consumer loop
- reconnect()          reopen the feed after a disconnect, then force a full resync
- on_session_change()  tear down subscription, discard the store, rebuild for the new user
- close()              unsubscribe and stop the consumer
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from ..core.ports import FeedTransportFactory, TaskApi
from ..core.session import SessionContext
from .change_feed import ChangeFeedSubscriber
from .errors import TaskError, Unauthorized
from .mutation_gateway import DEFAULT_MAX_TITLE_LENGTH, MutationGateway
from .reconciler import ChangeListener, Reconciler
from .task_models import FeedState, FeedStatusEvent, TaskFilter, TaskView

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionStatus:
    user_id: str | None
    task_filter: TaskFilter
    feed_state: FeedState
    stale: bool
    task_count: int
    pending_count: int


class TaskSession:
    def __init__(
            self,
            context: SessionContext,
            api: TaskApi,
            transport_factory: FeedTransportFactory,
            *,
            task_filter: TaskFilter = TaskFilter.ALL,
            max_title_length: int = DEFAULT_MAX_TITLE_LENGTH,
            auto_reconnect: bool = False,
            reconnect_delay_seconds: float = 5.0,
    ) -> None:
        self._api = api
        self._transport_factory = transport_factory
        self._max_title_length = max_title_length
        self._auto_reconnect = auto_reconnect
        self._reconnect_delay = max(0.0, float(reconnect_delay_seconds))
        self._listeners: list[ChangeListener] = []

        self._consumer: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._started = False

        self._build(context, task_filter)

    def _build(self, context: SessionContext, task_filter: TaskFilter) -> None:
        self.context = context
        self.reconciler = Reconciler(context, self._api, task_filter=task_filter)
        for listener in self._listeners:
            self.reconciler.add_listener(listener)
        self.feed = ChangeFeedSubscriber(context, self._transport_factory)
        self.gateway = MutationGateway(
            context,
            self._api,
            self.reconciler,
            max_title_length=self._max_title_length,
        )

    # ---- read side ----

    @property
    def task_filter(self) -> TaskFilter:
        return self.reconciler.task_filter

    @property
    def stale(self) -> bool:
        return self.reconciler.stale or (self._started and self.feed.state is not FeedState.CONNECTED)

    def view(self) -> list[TaskView]:
        return self.reconciler.view()

    def status(self) -> SessionStatus:
        return SessionStatus(
            user_id=self.context.user_id,
            task_filter=self.task_filter,
            feed_state=self.feed.state,
            stale=self.stale,
            task_count=len(self.reconciler.store),
            pending_count=self.reconciler.pending_count,
        )

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)
        self.reconciler.add_listener(listener)

    # ---- lifecycle ----

    async def start(self) -> None:
        """
        Load the list and subscribe. No-op without a signed-in user.

        A failed initial fetch or subscription leaves the session running but stale;
        use reconnect() (or /reconnect) to retry. Unauthorized propagates.
        """
        if self._started:
            return
        if not self.context.signed_in:
            logger.info("TaskSession idle: nobody signed in")
            return

        self._started = True
        self._consumer = asyncio.create_task(
            self.reconciler.run(self.feed.events(), on_status=self._on_feed_status),
            name="reconciler-consumer",
        )

        # Subscribe first: anything committed while the list loads reaches the resync journal.
        try:
            await self.feed.open()
        except Unauthorized:
            raise
        except TaskError as e:
            logger.warning("Change feed unavailable at start: %s", e.message)
        await self.reconciler.resync("initial load")
        logger.info("TaskSession started user=%s filter=%s", self.context.user_id, self.task_filter.value)

    async def set_filter(self, task_filter: TaskFilter) -> bool:
        return await self.reconciler.set_filter(task_filter)

    async def refresh(self) -> bool:
        return await self.reconciler.resync("refresh")

    async def reconnect(self) -> bool:
        """Explicitly reopen the change feed, then force a full resync."""
        if not self._started:
            await self.start()
            return not self.stale

        await self.feed.open()
        return await self.reconciler.resync("reconnected")

    async def _on_feed_status(self, event: FeedStatusEvent) -> None:
        # Status events are queued; ignore a disconnect that a reconnect already superseded.
        if event.state is not FeedState.DISCONNECTED or self.feed.state is not FeedState.DISCONNECTED:
            return
        logger.warning("Change feed disconnected (%s); list may be stale", event.reason or "unknown")
        if self._auto_reconnect and (self._reconnect_task is None or self._reconnect_task.done()):
            self._reconnect_task = asyncio.create_task(self._delayed_reconnect(), name="feed-reconnect")

    async def _delayed_reconnect(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        try:
            await self.reconnect()
        except TaskError as e:
            logger.warning("Automatic reconnect failed: %s", e.message)

    async def on_session_change(self, context: SessionContext) -> None:
        """Tear down the old subscription, discard the store, start over for `context`."""
        logger.info("Session change: %s -> %s", self.context.user_id, context.user_id)
        task_filter = self.task_filter
        await self.close()
        self.reconciler.discard()
        self._build(context, task_filter)
        await self.start()

    async def close(self) -> None:
        reconnect, self._reconnect_task = self._reconnect_task, None
        if reconnect is not None and not reconnect.done():
            reconnect.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reconnect

        await self.feed.close()

        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            try:
                await asyncio.wait_for(consumer, timeout=5.0)
            except asyncio.TimeoutError:
                consumer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await consumer
        self._started = False
