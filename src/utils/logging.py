"""
Logging configuration for the adverse-event safety pipeline.

Modules log through `logging.getLogger(__name__)`; this only decides where
records from the project's own package trees go and at what level.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional


# Top-level logger namespaces owned by this project
PROJECT_LOGGERS = ("src", "api")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Route project log records to stdout and, optionally, a file.

    Args:
        level: DEBUG, INFO, WARNING or ERROR; defaults to LOG_LEVEL, then INFO
        log_file: Extra file sink; defaults to LOG_FILE if set

    Returns:
        The root project logger ("src")
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    level_num = getattr(logging, level_name, logging.INFO)
    log_file = log_file or os.getenv("LOG_FILE")

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    sinks: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(path))

    for handler in sinks:
        handler.setLevel(level_num)
        handler.setFormatter(formatter)

    for name in PROJECT_LOGGERS:
        project_logger = logging.getLogger(name)
        project_logger.setLevel(level_num)
        project_logger.handlers = list(sinks)
        project_logger.propagate = False

    return logging.getLogger(PROJECT_LOGGERS[0])
