"""
Logging setup shared by the process entry points.
"""

import logging
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> Optional[logging.FileHandler]:
    """
    Apply a role's logging settings to the root logger.

    Args:
        log_level: Root logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Also append log records to this file if set

    Returns:
        The attached file handler, or None when no log file is configured
    """
    root = logging.getLogger()
    root.setLevel(log_level)

    if not log_file:
        return None

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    return handler
