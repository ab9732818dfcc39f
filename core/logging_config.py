# core/logging_config.py
"""Configure entity engine logging sinks and formatting.

This module configures:
- Standard library logging handlers (console and optional rotating file).
- Rich console output when enabled.

Notes:
    This module performs side-effectful logger configuration. Library code never
    calls it; entry points call
    [`core.logging_config.setup_engine_logging()`](core/logging_config.py:27) once
    at process startup.
"""

import logging as stdlib_logging
import logging.handlers
import os

import structlog
from rich.console import Console
from rich.logging import RichHandler

import config
from config import rich_formatter, simple_formatter


def setup_engine_logging(console: Console | None = None) -> None:
    """Set up logging handlers on the root logger.

    This configures:
    - A single console handler (Rich when `ENABLE_RICH_CONSOLE` is on and simple
      mode is off, a plain stream handler otherwise).
    - A rotating file handler under `LOG_DIR` when `LOG_FILE` is set.

    Notes:
        Existing root handlers are removed, so calling this twice does not
        duplicate output.
    """
    level = config.settings.LOG_LEVEL
    root_logger = stdlib_logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    if config.settings.ENABLE_RICH_CONSOLE and not config.settings.SIMPLE_LOGGING_MODE:
        rich_handler = RichHandler(
            level=level,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
            show_time=False,  # Timestamp already in our formatter
            show_level=False,  # Level already in our formatter
            console=console,
        )
        rich_handler.setFormatter(rich_formatter)
        root_logger.addHandler(rich_handler)
    else:
        stream_handler = stdlib_logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(simple_formatter)
        root_logger.addHandler(stream_handler)

    if config.settings.LOG_FILE:
        log_path = os.path.join(config.settings.LOG_DIR, config.settings.LOG_FILE)
        try:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
            file_handler = stdlib_logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                mode="a",
                encoding="utf-8",
            )
        except OSError as e:
            root_logger.error(
                f"Failed to configure file logging: {e}. Logging to console only.",
                exc_info=True,
            )
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(simple_formatter)
            root_logger.addHandler(file_handler)
            root_logger.info(f"File logging enabled. Log file: {log_path}")

    structlog.get_logger().debug(
        f"Entity engine logging setup complete. Log level: {stdlib_logging.getLevelName(root_logger.level)}."
    )
