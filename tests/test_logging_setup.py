# tests/test_logging_setup.py

from __future__ import annotations

import logging

import pytest

from shadowflow.logging_setup import _ConsoleNoiseFilter


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    "name, level, shown",
    [
        ("shadowflow.tasks.reconciler", logging.INFO, True),
        ("shadowflow.tasks.reconciler", logging.DEBUG, True),
        ("shadowflow.connectors.realtime_client", logging.INFO, False),
        ("shadowflow.connectors.realtime_client", logging.WARNING, True),
        ("shadowflow.tasks.task_api", logging.INFO, True),
        ("httpx", logging.WARNING, False),
        ("httpx", logging.ERROR, True),
        ("websockets.client", logging.WARNING, False),
        ("py.warnings", logging.WARNING, False),
        ("shadowflowish", logging.INFO, False),
    ],
)
def test_console_filter_by_logger_prefix(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(_record(name, level)) is shown
