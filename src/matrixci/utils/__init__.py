"""Utility modules."""

from .logging import setup_logging
from .time import as_utc, utcnow

__all__ = [
    "as_utc",
    "setup_logging",
    "utcnow",
]
