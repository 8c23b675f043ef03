"""Structured logging configuration for the OAuth server.

Modules log through ``structlog.get_logger(__name__)`` and pass structured
payloads with the ``details`` keyword::

    log = structlog.get_logger(__name__)
    log.debug("Authorization code issued", details={"client_id": client_id})

:func:`configure_logging` is called once by the application factory. Until it
is called structlog uses its default development configuration, which is what
the test suite sees.

Environment Variables:
    OAUTH_LOG_FORMAT: ``json`` for JSON lines, ``console`` for colored output.
    OAUTH_LOG_LEVEL: Minimum level (DEBUG, INFO, WARNING, ERROR).
"""

import logging
import sys

import structlog

from .constants import LOG_FORMAT, LOG_LEVEL

_configured = False


def configure_logging(log_format: str | None = None, log_level: str | None = None, force: bool = False) -> None:
    """Configure structlog and the stdlib root handler.

    Args:
        log_format (str | None): ``json`` or ``console``. Defaults to ``OAUTH_LOG_FORMAT``.
        log_level (str | None): Minimum log level. Defaults to ``OAUTH_LOG_LEVEL``.
        force (bool): Reconfigure even if already configured.
    """
    global _configured

    if _configured and not force:
        return

    log_format = (log_format or LOG_FORMAT).lower()
    level = getattr(logging, (log_level or LOG_LEVEL).upper(), logging.INFO)

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    _configured = True
