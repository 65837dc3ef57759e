"""Root logger configuration."""

import logging
import sys

from tradeloop.config import settings

LOG_FORMAT = "[%(levelname)s] [%(asctime)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

# Libraries that log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "web3", "urllib3", "telegram")


def setup_logging(level: str | None = None):
    level = (level or settings.log_level).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
