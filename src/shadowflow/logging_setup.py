# src/shadowflow/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Minimum level a record needs to reach the console, by logger-name prefix.
# Longest matching prefix wins; anything unlisted (third-party, py.warnings) needs ERROR.
_CONSOLE_MIN_LEVEL: dict[str, int] = {
    "shadowflow": logging.DEBUG,
    # heartbeats and frame chatter
    "shadowflow.connectors.realtime_client": logging.WARNING,
    "httpx": logging.ERROR,
    "httpcore": logging.ERROR,
    "websockets": logging.ERROR,
}
_DEFAULT_CONSOLE_MIN_LEVEL = logging.ERROR

# Library loggers that are too chatty even for the debug log file.
_LIBRARY_LEVELS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "websockets": logging.INFO,
}


def _console_min_level(name: str) -> int:
    best: str | None = None
    for prefix in _CONSOLE_MIN_LEVEL:
        if name == prefix or name.startswith(prefix + "."):
            if best is None or len(prefix) > len(best):
                best = prefix
    return _CONSOLE_MIN_LEVEL[best] if best is not None else _DEFAULT_CONSOLE_MIN_LEVEL


class _ConsoleNoiseFilter(logging.Filter):
    """Keeps the interactive prompt readable: own logs pass, transports and libraries mostly don't."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= _console_min_level(record.name)


def setup_logging(
    *,
    log_dir: str | Path = ".local/shadowflow",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (stderr, filtered) plus a full debug log in `<log_dir>/shadowflow.log`.

    Call once, before the first log line. Returns the log file path.
    """
    log_file = Path(log_dir) / "shadowflow.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in (console, file_handler):
        h.setFormatter(fmt)
        root.addHandler(h)

    logging.captureWarnings(True)
    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    return log_file
