"""
Central logging configuration for pocketcal.

Keeps the engine's own loggers at the requested verbosity while quieting
third-party libraries, with an environment override for troubleshooting.
"""

import logging
import os
from typing import Optional

# Package loggers whose level follows the debug switch
POCKETCAL_MODULES = [
    "pocketcal",
    "pocketcal.calendar.wall_clock",
    "pocketcal.calendar.rrule_engine",
    "pocketcal.calendar.expander",
    "pocketcal.calendar.grouping",
    "pocketcal.domain.event_store",
    "pocketcal.domain.edit_resolver",
    "pocketcal.domain.reminders",
]

# Third-party loggers kept quiet unless explicitly reset
SUPPRESSED_LOGGERS = [
    "dateutil",
    "pydantic",
    "asyncio",
]


def configure_lite_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for pocketcal modules.

    Args:
        debug_mode: Whether to enable debug logging for pocketcal modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        POCKETCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        POCKETCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("POCKETCAL_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("POCKETCAL_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s - %(name)s - %(message)s")
        )
        root_logger.addHandler(handler)

    logger_config: dict[str, int] = dict.fromkeys(SUPPRESSED_LOGGERS, logging.WARNING)

    package_level = logging.DEBUG if final_debug else logging.INFO
    for module in POCKETCAL_MODULES:
        logger_config[module] = package_level

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for pocketcal modules")
    else:
        root_logger.info("Production logging configuration applied")


def reset_logging_to_debug() -> None:
    """Reset all loggers, including suppressed third-party ones, to DEBUG."""
    logging.getLogger().setLevel(logging.DEBUG)

    for logger_name in SUPPRESSED_LOGGERS + POCKETCAL_MODULES:
        logging.getLogger(logger_name).setLevel(logging.DEBUG)

    logging.getLogger().info("All loggers reset to DEBUG level for troubleshooting")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}

    for logger_name in ["pocketcal", *SUPPRESSED_LOGGERS]:
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)

    return status
