"""Bar time normalisation shared by the engine, the feeder and the scanner helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import numpy as np
import pandas as pd

_EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)
# Numeric bar times below this are epoch seconds, above it epoch milliseconds.
_EPOCH_MS_THRESHOLD = 1_000_000_000_000


def _datetime_to_ms(value: datetime) -> float:
    dt_value = value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)
    delta = dt_value - _EPOCH_UTC
    return (delta.days * 86400 + delta.seconds) * 1000.0 + delta.microseconds / 1000.0


def time_key(value: Any) -> str:
    """Stable string key used to look bars up by time."""
    if isinstance(value, (bool, np.bool_)):
        return str(value)
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        number = float(value)
        return str(int(number)) if number.is_integer() else repr(number)
    if isinstance(value, str):
        return value
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict) and {"year", "month", "day"} <= set(value):
        return f"{int(value['year'])}-{int(value['month']):02d}-{int(value['day']):02d}"
    return str(value)


def time_to_number(value: Any) -> float | None:
    """Sortable numeric form of a bar time, or None when it cannot be parsed."""
    if value is None or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
        return number if np.isfinite(number) else None
    if isinstance(value, datetime):
        return _datetime_to_ms(value)
    if isinstance(value, date):
        return _datetime_to_ms(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, dict) and {"year", "month", "day"} <= set(value):
        try:
            return _datetime_to_ms(
                datetime(int(value["year"]), int(value["month"]), int(value["day"]), tzinfo=timezone.utc)
            )
        except (TypeError, ValueError):
            return None
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return _datetime_to_ms(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        return None


def time_to_epoch_ms(value: Any) -> float | None:
    """Like time_to_number, but numeric inputs in epoch seconds are scaled to milliseconds."""
    number = time_to_number(value)
    if number is None:
        return None
    if isinstance(value, (int, float, np.integer, np.floating)) and abs(number) < _EPOCH_MS_THRESHOLD:
        return number * 1000.0
    return number


def time_sort_key(value: Any) -> tuple[int, float, str]:
    """Sort key: parseable times in chronological order, then the rest by their lookup key."""
    number = time_to_number(value)
    if number is None:
        return (1, 0.0, time_key(value))
    return (0, number, "")
