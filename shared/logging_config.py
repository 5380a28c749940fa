"""
Logging configuration for the flow console.

One setup call per process: the console launcher configures the root logger
and every module logs through ``logging.getLogger(__name__)``.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Chatty third-party loggers kept at WARNING unless the console runs at DEBUG
NOISY_LOGGERS = ("urllib3", "werkzeug")


def resolve_level(level: Union[int, str, None]) -> int:
    """Accept a logging constant or a level name such as 'debug'."""
    if level is None:
        level = os.getenv("FLOW_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    component_name: str,
    level: Union[int, str, None] = None,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
):
    """
    Configure logging for a console process.

    Args:
        component_name: Component identifier (e.g., 'console')
        level: Logging level or level name; defaults to FLOW_LOG_LEVEL
        log_file: Optional file path for log output (defaults to FLOW_LOG_FILE)
        format_string: Custom format string (default provided)
    """
    level = resolve_level(level)
    log_file = log_file or os.getenv("FLOW_LOG_FILE") or None
    if format_string is None:
        format_string = f'[%(asctime)s] [{component_name.upper()}] %(levelname)s %(name)s - %(message)s'

    logging.basicConfig(
        level=level,
        format=format_string,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt=DATE_FORMAT))
        logging.getLogger().addHandler(file_handler)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(component_name)
    logger.info(f"{component_name.upper()} logging initialized (level={logging.getLevelName(level)})")

    return logger
