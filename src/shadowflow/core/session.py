# src/shadowflow/core/session.py

from __future__ import annotations

import logging
from dataclasses import dataclass

from .ports import SessionProvider

logger = logging.getLogger(__name__)


class StaticSessionProvider:
    """
    Session provider backed by a token handed to us (env/config or /signin).

    Token issuing and refresh belong to the identity provider; this only remembers
    the current pair and hands the token out on request.
    """

    def __init__(self, *, user_id: str | None = None, access_token: str | None = None) -> None:
        self._user_id = (user_id or "").strip() or None
        self._access_token = (access_token or "").strip() or None

    def current_user_id(self) -> str | None:
        return self._user_id

    async def access_token(self) -> str | None:
        return self._access_token

    def sign_in(self, *, user_id: str, access_token: str) -> SessionContext:
        self._user_id = user_id.strip() or None
        self._access_token = access_token.strip() or None
        logger.info("Signed in user=%s", self._user_id)
        return SessionContext.from_provider(self)

    def sign_out(self) -> SessionContext:
        logger.info("Signed out user=%s", self._user_id)
        self._user_id = None
        self._access_token = None
        return SessionContext.from_provider(self)


@dataclass(frozen=True, slots=True)
class SessionContext:
    """
    Explicit session handed to every task component at construction.

    Replaces any global "current user": when the user changes, a new context is built
    and TaskSession.on_session_change() re-initialises everything from it.
    """

    user_id: str | None
    provider: SessionProvider

    @classmethod
    def from_provider(cls, provider: SessionProvider) -> SessionContext:
        return cls(user_id=provider.current_user_id(), provider=provider)

    @property
    def signed_in(self) -> bool:
        return bool(self.user_id)

    async def access_token(self) -> str | None:
        return await self.provider.access_token()
