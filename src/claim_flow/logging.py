"""
structlog setup shared by the pipeline, the OCR client and the CLI.

Events are dotted names (``ocr_client.attempt_failed``) with keyword fields.
The orchestrator binds ``claim_id`` through structlog contextvars, so every
event emitted while a claim is converting carries it.
"""

import logging
import sys

import structlog

# httpx and httpcore log every request through stdlib logging at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore")


def _processors(json_output: bool) -> list:
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Apply *level* (default ``settings.log_level``); JSON lines unless stderr is a TTY."""
    from claim_flow.config import settings

    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    if json_output is None:
        json_output = not sys.stderr.isatty()

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# Import-time default; the CLI reconfigures with settings.
structlog.configure(
    processors=_processors(json_output=not sys.stderr.isatty()),
    wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    cache_logger_on_first_use=False,
)

log = structlog.get_logger()
