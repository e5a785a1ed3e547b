"""Shared logging configuration using structlog."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

from gb_common.config.env import parse_bool_env

TEARDOWN_PHASE = "teardown"


def _resolve_level(value: str | int | None, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    if value is None:
        return logging.INFO
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    return logging.getLevelNamesMapping().get(value.upper(), logging.INFO)


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_logging(
    *,
    level: str | int | None = None,
    debug: bool = False,
    log_file: str | None = None,
    json: bool | None = None,
    force: bool = False,
) -> None:
    """Configure stdlib logging and structlog with a shared formatter.

    Explicit arguments win over ``GB_LOG_LEVEL``, ``GB_LOG_JSON`` and
    ``GB_LOG_FILE``. Without ``force`` an already configured root logger is
    left alone and only structlog is (re)wired.
    """
    env_level = os.environ.get("GB_LOG_LEVEL")
    env_json = parse_bool_env(os.environ.get("GB_LOG_JSON"))
    env_log_file = os.environ.get("GB_LOG_FILE")

    resolved_level = _resolve_level(level or env_level, debug)
    resolved_json = env_json if json is None else json
    resolved_log_file = env_log_file if log_file is None else log_file

    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        _configure_structlog()
        return

    renderer: structlog.types.Processor
    if resolved_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=_shared_processors(),
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if resolved_log_file:
        handlers.append(logging.FileHandler(resolved_log_file))

    if force:
        root_logger.handlers.clear()

    root_logger.setLevel(resolved_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    _configure_structlog()


def phase_logger(name: str, phase: str) -> logging.LoggerAdapter[Any]:
    """Return a logger adapter tagging every record with ``gb_phase``."""
    return logging.LoggerAdapter(logging.getLogger(name), {"gb_phase": phase})


def bind_run_context(**values: Any) -> None:
    """Attach run-wide fields (target node, run id) to every log line."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()
