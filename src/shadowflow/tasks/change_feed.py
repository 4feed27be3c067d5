# src/shadowflow/tasks/change_feed.py

"""
Change-feed subscriber.

Turns the push transport into one typed async stream:
- ChangeEvent for every row-level insert/update/delete of the user's tasks
- FeedStatusEvent for connection state transitions (connected / disconnected)

One subscription per signed-in user, independent of the active filter.
On transport failure the subscriber goes DISCONNECTED and stays there until the owner
calls open() again. The stream itself only ends on close().
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from ..core.ports import FeedTransport, FeedTransportFactory
from ..core.session import SessionContext
from .errors import DecodeError, TransportError, Unauthorized
from .task_models import ChangeEvent, ChangeKind, FeedItem, FeedState, FeedStatusEvent, Task

logger = logging.getLogger(__name__)


def decode_change(payload: Mapping[str, Any]) -> ChangeEvent:
    """Decode a `{eventType, new, old}` payload into a ChangeEvent."""
    if not isinstance(payload, Mapping):
        raise DecodeError(f"change payload must be an object, got {type(payload).__name__}")

    kind = ChangeKind.from_wire(payload.get("eventType"))
    new = payload.get("new") or {}
    old = payload.get("old") or {}
    if not isinstance(new, Mapping) or not isinstance(old, Mapping):
        raise DecodeError("change payload rows must be objects")

    if kind is ChangeKind.DELETE:
        task_id = old.get("id") or new.get("id")
        if not task_id:
            raise DecodeError("delete event has no id")
        return ChangeEvent(kind=kind, task_id=str(task_id), task=None, old=dict(old))

    task = Task.from_row(new)
    return ChangeEvent(kind=kind, task_id=task.id, task=task, old=dict(old))


class ChangeFeedSubscriber:
    def __init__(self, context: SessionContext, transport_factory: FeedTransportFactory) -> None:
        self._context = context
        self._transport_factory = transport_factory
        self._transport: FeedTransport | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[FeedItem | None] = asyncio.Queue()
        self._state = FeedState.CLOSED
        self._ended = False

    @property
    def state(self) -> FeedState:
        return self._state

    def _set_state(self, state: FeedState, reason: str | None = None) -> None:
        if state == self._state:
            return
        logger.info("Change feed %s -> %s%s", self._state.value, state.value, f" ({reason})" if reason else "")
        self._state = state
        if state in (FeedState.CONNECTED, FeedState.DISCONNECTED):
            self._queue.put_nowait(FeedStatusEvent(state=state, reason=reason))

    async def open(self) -> None:
        """
        Subscribe to all of the user's task changes.

        Safe to call again after a disconnect (that is the only way back to CONNECTED).
        Raises Unauthorized if nobody is signed in, TransportError if the subscription fails.
        """
        if self._ended:
            raise RuntimeError("change feed was closed; create a new subscriber")
        if self._state in (FeedState.CONNECTING, FeedState.CONNECTED):
            return

        user_id = self._context.user_id
        if not user_id:
            raise Unauthorized("No signed-in user; cannot subscribe to task changes")

        await self._drop_transport()

        self._set_state(FeedState.CONNECTING)
        try:
            transport = self._transport_factory()
            self._transport = transport
            token = await self._context.access_token()
            await transport.connect(user_id=user_id, access_token=token)
        except TransportError as e:
            await self._drop_transport()
            self._set_state(FeedState.DISCONNECTED, e.message)
            raise
        except Exception as e:
            await self._drop_transport()
            self._set_state(FeedState.DISCONNECTED, e.__class__.__name__)
            raise TransportError(f"Change feed subscription failed: {e.__class__.__name__}") from e
        except BaseException:
            await self._drop_transport()
            self._set_state(FeedState.DISCONNECTED, "cancelled")
            raise

        self._set_state(FeedState.CONNECTED)
        self._pump_task = asyncio.create_task(self._pump(transport), name="change-feed-pump")

    async def _pump(self, transport: FeedTransport) -> None:
        reason = "connection closed"
        try:
            async for payload in transport.changes():
                try:
                    event = decode_change(payload)
                except DecodeError as e:
                    logger.warning("Skipping malformed change payload: %s", e)
                    continue
                self._queue.put_nowait(event)
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            reason = e.message
        except Exception as e:
            logger.exception("Change feed transport crashed")
            reason = e.__class__.__name__

        if transport is self._transport and self._state is FeedState.CONNECTED:
            self._set_state(FeedState.DISCONNECTED, reason)

    async def _drop_transport(self) -> None:
        pump, self._pump_task = self._pump_task, None
        if pump is not None and not pump.done():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception:
                logger.debug("Change feed transport close failed", exc_info=True)

    async def close(self) -> None:
        """Unsubscribe and end the event stream. Idempotent."""
        if self._ended:
            return
        self._ended = True
        self._set_state(FeedState.CLOSED)
        await self._drop_transport()
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[FeedItem]:
        """The typed event stream. Exactly one consumer (the Reconciler loop)."""
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item
