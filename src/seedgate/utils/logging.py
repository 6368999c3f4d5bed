"""Process-wide logger for the seed service and client.

Level comes from SEEDGATE_LOG_LEVEL (default INFO). Certificate bodies,
signatures and allowlist contents are never passed to this logger.
"""
import logging
import os
import sys

_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"


def get_logger() -> logging.Logger:
    logger = logging.getLogger("seedgate")
    if not logger.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(h)
        level = os.getenv("SEEDGATE_LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level, logging.INFO))
    return logger
