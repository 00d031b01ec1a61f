"""loguru setup for the CLI, the API and the capability clients.

Console output is used on an interactive terminal when TERRA_LOG_FORMAT is
"console"; everything else gets one JSON object per line on stdout.
"""

import sys
from typing import Optional

from loguru import logger

from terra_verify.config.settings import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | <level>{message}</level>"
)


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    (Re)install the loguru sinks.

    Args:
        log_level: Overrides settings.log_level (e.g. from a CLI flag)
        log_format: Overrides settings.log_format ("json" or "console")
    """
    level = (log_level or settings.log_level).upper()
    console = (log_format or settings.log_format).lower() == "console" and sys.stderr.isatty()

    if console:
        handler = {"sink": sys.stderr, "format": CONSOLE_FORMAT, "level": level, "colorize": True}
    else:
        handler = {
            "sink": sys.stdout,
            "format": "{message}",
            "level": level,
            "serialize": True,
            "diagnose": False,
        }

    # Unbound loggers still render {extra[component]}
    logger.configure(handlers=[handler], extra={"component": "terra_verify"})


def get_logger(component: str):
    """
    Logger bound to a component name.

    Example:
        >>> log = get_logger("capabilities.image_analysis")
        >>> log.info("Calling vision endpoint")
    """
    return logger.bind(component=component)


configure_logging()

__all__ = ["logger", "get_logger", "configure_logging"]
