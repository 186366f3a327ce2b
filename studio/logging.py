"""
structlog setup. Console output for development, JSON for production.
Modules log through get_logger(__name__), never print().

Context that spans several log lines (the HTTP request being served, the
store write in progress) is bound with contextvars, so every event emitted
inside it carries the same keys:

  with operation_context("redeem_makeup", student_id="3"):
      store.record_redemption(...)      # its warnings carry operation + student_id
"""
import logging
import sys

import structlog
from structlog.contextvars import bound_contextvars


def setup_logging(json_output: bool = False, log_level: str = "INFO") -> None:
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib loggers (uvicorn, sqlalchemy) go to the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """Logger with the module name bound as `logger`."""
    return structlog.get_logger().bind(logger=name)


def operation_context(operation: str, **ids):
    """Bind the operation name plus any non-empty ids for the duration of a block."""
    return bound_contextvars(
        operation=operation, **{k: v for k, v in ids.items() if v is not None}
    )
