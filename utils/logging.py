"""
Logging configuration and utilities
"""

import logging
import sys
from typing import Optional

from utils.structured_logging import site_id_var

WORKER_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [site=%(site_id)s] %(message)s"

# These echo full request URLs, and some providers take tokens in the query string
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class SiteContextFilter(logging.Filter):
    """Stamp every record with the site the current job works on"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.site_id = site_id_var.get() or "-"
        return True


def setup_logging(level: Optional[str] = None) -> None:
    """Setup plain-text logging for the arq worker"""
    formatter = logging.Formatter(fmt=WORKER_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SiteContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    logging.getLogger("arq").setLevel(logging.INFO)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)
