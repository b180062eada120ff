"""
Logging Configuration - Console logging for the confluence package
"""

import logging
import os

DEFAULT_LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PACKAGE_LOGGER = "confluence"


def setup_logging(log_level=DEFAULT_LOG_LEVEL):
    """Configure root console output and pin the package logger to log_level"""
    if isinstance(log_level, str):
        log_level = log_level.upper()

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[
            logging.StreamHandler()
        ]
    )

    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)

    # numpy/scipy warnings are routed through the warnings module
    logging.captureWarnings(True)
    logging.getLogger("py.warnings").setLevel(logging.ERROR)

    logging.getLogger(PACKAGE_LOGGER).info(f"Logging initialized at level: {logging.getLevelName(log_level)}")
