from __future__ import annotations

import logging
import os
import sys

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("TRADE_PLANNER_LOG_LEVEL", "") or logging.INFO
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        return resolved
    return int(level)


def configure_logging(
    *,
    level: int | str | None = None,
    log_file: str | None = None,
    console: bool = True,
    analyzer_level: int | str | None = None,
) -> None:
    """
    Install root handlers for planner runs.

    ``level`` falls back to ``TRADE_PLANNER_LOG_LEVEL`` and then INFO.
    ``analyzer_level`` lets the chatty per-stage loggers under
    ``trade_planner.analyzers`` run at a different level than the rest.
    """
    handlers: list[logging.Handler] = []

    if console:
        handlers.append(logging.StreamHandler(stream=sys.stderr))

    if log_file:
        log_file = str(log_file)
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    if not handlers:
        # Never leave logging unconfigured.
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=_resolve_level(level), format=DEFAULT_FORMAT, handlers=handlers, force=True)

    if analyzer_level is not None:
        logging.getLogger("trade_planner.analyzers").setLevel(_resolve_level(analyzer_level))
