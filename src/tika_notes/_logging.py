"""Logging configuration for tika.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

The log level can be configured via the TIKA_LOG_LEVEL environment variable
(DEBUG, INFO, WARNING, ERROR; default WARNING) or raised with ``tika -v``.
All log output goes to stderr so that stdout stays machine-parseable.
"""

import logging
import os
import sys

PACKAGE_LOGGER = "tika_notes"


def configure_logging() -> None:
    """Configure logging for the tika package.

    Call this once at application startup (in cli.main).
    Subsequent calls are no-ops.
    """
    root_logger = logging.getLogger(PACKAGE_LOGGER)

    # Skip if already configured (has handlers)
    if root_logger.handlers:
        return

    level_name = os.environ.get("TIKA_LOG_LEVEL", "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt="[%(levelname)s] %(name)s: %(message)s"))

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Prevent propagation to root logger (avoids duplicate messages)
    root_logger.propagate = False


def set_verbosity(verbosity: int) -> None:
    """Lower the package log threshold for each ``-v`` given.

    ``-v`` shows INFO, ``-vv`` and beyond show DEBUG. Never raises the level
    above what TIKA_LOG_LEVEL already allows.
    """
    if verbosity <= 0:
        return
    level = logging.INFO if verbosity == 1 else logging.DEBUG
    root_logger = logging.getLogger(PACKAGE_LOGGER)
    current = root_logger.level or logging.WARNING
    root_logger.setLevel(min(current, level))
