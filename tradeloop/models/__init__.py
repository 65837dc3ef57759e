"""Database models."""

from tradeloop.models.swap import Swap
from tradeloop.models.job_log import JobLog

__all__ = [
    "Swap",
    "JobLog",
]
