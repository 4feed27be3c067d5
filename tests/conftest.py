# tests/conftest.py

from __future__ import annotations

from types import SimpleNamespace

import pytest

from shadowflow.core.session import SessionContext, StaticSessionProvider
from shadowflow.core.state import AppState
from shadowflow.tasks.reconciler import Reconciler
from shadowflow.tasks.mutation_gateway import MutationGateway
from shadowflow.tasks.session import TaskSession

from .fakes import FakeTaskServer, FakeTransportFactory, make_task


@pytest.fixture()
def settings(tmp_path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the command handlers.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment and any local .env.
    """
    return SimpleNamespace(
        app_name="ShadowFlow",
        data_dir=tmp_path,
        api_base_url="http://api.test",
        max_title_length=200,
    )


@pytest.fixture()
def provider() -> StaticSessionProvider:
    return StaticSessionProvider(user_id="u1", access_token="tok-1")


@pytest.fixture()
def context(provider: StaticSessionProvider) -> SessionContext:
    return SessionContext.from_provider(provider)


@pytest.fixture()
def server() -> FakeTaskServer:
    """Three tasks, newest first: t3 (done), t2, t1."""
    return FakeTaskServer(
        [
            make_task("t1", title="Buy bread", minutes=1),
            make_task("t2", title="Call mom", minutes=2),
            make_task("t3", title="File taxes", minutes=3, done=True),
        ]
    )


@pytest.fixture()
def transports(server: FakeTaskServer) -> FakeTransportFactory:
    return FakeTransportFactory(server)


@pytest.fixture()
def reconciler(context: SessionContext, server: FakeTaskServer) -> Reconciler:
    return Reconciler(context, server)


@pytest.fixture()
def gateway(context: SessionContext, server: FakeTaskServer, reconciler: Reconciler) -> MutationGateway:
    return MutationGateway(context, server, reconciler)


@pytest.fixture()
def session(context: SessionContext, server: FakeTaskServer, transports: FakeTransportFactory) -> TaskSession:
    return TaskSession(context, server, transports)


@pytest.fixture()
def state(settings, provider, server, session) -> AppState:
    """AppState wired with the fake server; `api` is only closed on shutdown, never called."""
    return AppState(settings=settings, provider=provider, api=server, session=session)
