"""Structured logging configuration for slink.

Configures structlog on top of stdlib logging.  Output goes to stderr so
stdout carries only command results (URLs, tables).

Usage::

    from slink.logging import configure_logging, get_logger

    configure_logging()  # Call once per invocation
    logger = get_logger(__name__)
    logger.info("share_created", file_uuid=uuid, token=redact_token(token))
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from contextvars import ContextVar

import structlog

# Correlates every event emitted by one command invocation.
invocation_id_ctx: ContextVar[str | None] = ContextVar(
    "invocation_id", default=None,
)

TOKEN_PREFIX_LENGTH = 4

_configured = False


def _add_invocation_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Inject the current invocation_id from context into every log entry."""
    iid = invocation_id_ctx.get()
    if iid is not None:
        event_dict["invocation_id"] = iid
    return event_dict


def redact_token(token: str | None) -> str:
    """Truncate a share token to a short prefix for logging.

    Returns ``<prefix>...`` or ``<redacted>`` for missing/short tokens.
    """
    if not token or len(token) <= TOKEN_PREFIX_LENGTH:
        return "<redacted>"
    return f"{token[:TOKEN_PREFIX_LENGTH]}..."


def new_invocation_id() -> str:
    iid = uuid.uuid4().hex[:12]
    invocation_id_ctx.set(iid)
    return iid


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
            Defaults to SLINK_LOG_LEVEL env var or WARNING.
        json_output: If True, emit JSON lines. If False, emit
            human-readable console output. Defaults to SLINK_LOG_FORMAT
            env var == "json".
        force: Reconfigure even if already configured.
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    level = level or os.environ.get("SLINK_LOG_LEVEL", "WARNING")
    if json_output is None:
        json_output = os.environ.get("SLINK_LOG_FORMAT", "console") == "json"

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        _add_invocation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))

    # SQL echo is only wanted at DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given name."""
    return structlog.get_logger(name)
