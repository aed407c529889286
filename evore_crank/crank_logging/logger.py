"""
Crank log output: one structlog line per event.

Each line carries event_type (the first positional argument), level, logger
and a UTC timestamp, plus whatever keyword fields the call passes
(round_id, deployer_id, signature, cycle summary counters). Pubkeys and
signatures can be passed as solders objects; they are written as base58.

LOG_LEVEL sets the threshold; LOG_FORMAT=json (default) or console.
Configured on first import, so this module must not import evore_crank.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

EventDict = dict[str, Any]


def _utc_timestamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _solders_as_base58(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if type(value).__module__.startswith("solders"):
            event_dict[key] = str(value)
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """crank events are keyed by event_type, not structlog's 'event'."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def configure_structlog(log_format: str | None = None, level: int | None = None) -> None:
    """(Re)configure output; arguments override LOG_FORMAT / LOG_LEVEL (the CLI and tests use them)."""
    fmt = (log_format or LOG_FORMAT).strip().lower()
    renderer: Any
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _utc_timestamp,
            _solders_as_base58,
            _event_type,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE if level is None else level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger with `logger` bound to the module name:

        logger = get_logger(__name__)
        logger.info("crank_tx_sent", label="deploy", signature=sig, instruction_count=4)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_deployer(deployer_id: str) -> structlog.BoundLogger:
    """Logger for per-deployer events (admission, submission) with deployer_id bound."""
    return get_logger("evore_crank").bind(deployer_id=deployer_id)
