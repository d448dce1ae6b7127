"""Shared utilities for the trade simulator: logging and bar-time helpers."""

from .logging_setup import get_logger, setup_logging, teardown_logging
from .time_keys import time_key, time_sort_key, time_to_epoch_ms, time_to_number

__all__ = [
    "setup_logging",
    "teardown_logging",
    "get_logger",
    "time_key",
    "time_to_number",
    "time_to_epoch_ms",
    "time_sort_key",
]
