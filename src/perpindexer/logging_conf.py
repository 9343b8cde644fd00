# src/perpindexer/logging_conf.py
import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Chatty third-party loggers; their per-request lines drown the event log.
_NOISY = ("httpx", "httpcore", "sqlalchemy.engine")


def setup_logging(level: Optional[int] = None) -> logging.Logger:
    logger = logging.getLogger("perpindexer")
    if logger.handlers:
        return logger
    if level is None:
        level = logging.DEBUG if os.getenv("ENV", "dev") == "dev" else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
