# src/shadowflow/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..tasks.session import TaskSession
from ..tasks.task_api import HttpTaskApi
from .session import StaticSessionProvider


@dataclass
class AppState:
    """Everything a connector or command handler needs, wired once in bootstrap."""

    settings: Any
    provider: StaticSessionProvider
    api: HttpTaskApi
    session: TaskSession

    # Background command tasks started by the console (mutations run concurrently).
    background: set[Any] = field(default_factory=set)
