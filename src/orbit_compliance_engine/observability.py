"""Structured logging for the compliance engine.

All modules obtain their logger with ``get_logger(__name__)`` and log with a
short event message plus keyword context::

    logger.info("Requirement status changed", assessment_id=..., new_state=...)

``configure_logging`` is called once by the embedding application. Without
it, structlog's development defaults apply, which is what the test suite uses.
"""

import logging

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog processors and the minimum log level.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        json_logs: Render JSON lines instead of the console renderer.
    """
    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a structured logger bound to the given module name.

    Args:
        name: Logger name, conventionally ``__name__``.

    Returns:
        A structlog bound logger accepting keyword context.
    """
    return structlog.get_logger(name)
