from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname).1s | %(name)-30.30s | %(message)s"
QUIET_LOGGERS = ("botocore", "boto3", "urllib3")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Route every hackvote logger to stdout, where Lambda picks it up."""

    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # AWS SDK request traces stay out of DEBUG output
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))
    return root
