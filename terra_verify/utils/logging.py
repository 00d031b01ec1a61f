"""structlog setup for stores, evaluators and the orchestrator.

Events are snake_case names with keyword context:

    log.info("verification_complete", decision="pass", confidence=0.91)

Pipeline runs bind their ids into contextvars, so anything logged from
inside a pipeline task (including step evaluators) carries pipeline_id and
submission_id without passing loggers around.
"""

import sys
from typing import Any, Optional

import structlog
from structlog.contextvars import bind_contextvars, merge_contextvars

from terra_verify.config.settings import settings


def configure_structured_logging(
    log_format: Optional[str] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure structlog from settings.

    Args:
        log_format: "console" for colorized dev output on a TTY, anything else for JSON
        log_level: Minimum level; defaults to settings.log_level
    """
    log_format = (log_format or settings.log_format).lower()
    log_level = (log_level or settings.log_level).upper()

    processors = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "console" and sys.stderr.isatty():
        processors.append(
            structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def bind_pipeline_context(pipeline_id: str, submission_id: str) -> None:
    """Bind pipeline ids for the rest of the current task's context."""
    bind_contextvars(pipeline_id=pipeline_id, submission_id=submission_id)


def get_structured_logger(component: str, **context: Any) -> structlog.BoundLogger:
    """
    Logger bound to a component name plus any extra context.

    Example:
        >>> log = get_structured_logger("PipelineStore")
        >>> log.info("pipeline_saved", pipeline_id="pipeline_sub_1_1700000000000_ab12cd34")
    """
    return structlog.get_logger().bind(component=component, **context)


configure_structured_logging()


__all__ = [
    "bind_pipeline_context",
    "configure_structured_logging",
    "get_structured_logger",
]
