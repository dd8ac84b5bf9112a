# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
Logging for the relying party.

Everything goes through loguru. Records are tagged with the active OpenTelemetry span so that a
login round trip (authorization redirect, token exchange, JWT validation) can be followed across
log lines. Subjects are never logged in clear; use `anonymize`.

Environment:
    COREASON_LOG_LEVEL: Minimum level, `INFO` when unset or unknown.
    COREASON_LOG_JSON: `true` serializes console records as JSON on stdout.
    COREASON_LOG_FILE: Optional path of a rotated JSON log file.
"""

import hashlib
import hmac
import logging
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger
from opentelemetry import trace

__all__ = ["logger", "configure_logging", "anonymize"]

DEFAULT_LEVEL = "INFO"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class StdlibToLoguruHandler(logging.Handler):
    """
    Forwards `logging` records emitted by httpx, httpcore and authlib to loguru.

    The loguru caller depth is adjusted so records point at the library frame that logged,
    not at this handler.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename in (logging.__file__, __file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def add_span_context(record: dict[str, Any]) -> None:
    """Loguru patcher: copies the current span's trace and span ids into `record["extra"]`."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        record["extra"]["trace_id"] = format(span_context.trace_id, "032x")
        record["extra"]["span_id"] = format(span_context.span_id, "016x")


def anonymize(value: str, salt: str) -> str:
    """
    Pseudonymizes a subject (or any other identifier) for logs and span attributes.

    Args:
        value: The identifier, usually the `sub` claim.
        salt: The configured PII salt.

    Returns:
        str: Hex HMAC-SHA256 of `value` keyed by `salt`.
    """
    return hmac.new(salt.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def _resolve_level(name: str) -> str:
    try:
        logger.level(name)
    except ValueError:
        return DEFAULT_LEVEL
    return name


def _add_file_sink(log_file: str, level: str) -> None:
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, rotation="500 MB", retention="10 days", serialize=True, enqueue=True, level=level)
    except OSError:
        # Read-only filesystems keep console logging only
        logger.warning(f"Unable to open log file {log_file}, file logging disabled")


def configure_logging() -> None:
    """
    (Re)configures loguru sinks from the environment and routes standard logging into them.

    Safe to call repeatedly; every call replaces the previous sinks.
    """
    level = _resolve_level(os.getenv("COREASON_LOG_LEVEL", DEFAULT_LEVEL).upper())

    logger.configure(handlers=[], patcher=add_span_context)
    if os.getenv("COREASON_LOG_JSON", "false").lower() == "true":
        logger.add(sys.stdout, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    log_file = os.getenv("COREASON_LOG_FILE")
    if log_file:
        _add_file_sink(log_file, level)

    logging.basicConfig(handlers=[StdlibToLoguruHandler()], level=0, force=True)
    numeric_level = logging.getLevelName(level)
    logging.getLogger().setLevel(numeric_level if isinstance(numeric_level, int) else logging.INFO)


configure_logging()
