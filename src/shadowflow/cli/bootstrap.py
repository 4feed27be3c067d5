# src/shadowflow/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures the local (gitignored) data directory exists,
- wires the HTTP task API, the realtime transport and the session provider
  into one TaskSession held by AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.realtime_client import RealtimeTransport
from ..core.ports import FeedTransport
from ..core.session import SessionContext, StaticSessionProvider
from ..core.state import AppState
from ..tasks.session import TaskSession
from ..tasks.task_api import HttpTaskApi

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    provider = StaticSessionProvider(user_id=settings.user_id, access_token=settings.access_token)
    api = HttpTaskApi(settings.api_base_url, timeout_seconds=settings.http_timeout_seconds)

    def transport_factory() -> FeedTransport:
        return RealtimeTransport(
            settings.realtime_url,
            api_key=settings.api_key,
            heartbeat_seconds=settings.heartbeat_seconds,
        )

    session = TaskSession(
        SessionContext.from_provider(provider),
        api,
        transport_factory,
        max_title_length=settings.max_title_length,
        auto_reconnect=settings.feed_auto_reconnect,
        reconnect_delay_seconds=settings.reconnect_delay_seconds,
    )

    logger.info(
        "State ready api=%s realtime=%s user=%s",
        settings.api_base_url,
        settings.realtime_url,
        settings.user_id or "-",
    )
    return AppState(settings=settings, provider=provider, api=api, session=session)


async def shutdown_state(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.session.close()
    except Exception:
        logger.exception("Failed to close task session.")

    try:
        await state.api.aclose()
    except Exception:
        logger.debug("HTTP client close failed.", exc_info=True)
