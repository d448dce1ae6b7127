"""CSV loading of bars and signals with schema validation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from core.time_keys import time_key, time_sort_key
from .models import Bar, Signal

logger = logging.getLogger(__name__)

REQUIRED_BAR_COLUMNS: tuple[str, ...] = ("time", "open", "high", "low", "close")
REQUIRED_SIGNAL_COLUMNS: tuple[str, ...] = ("time", "type", "price")
_PRICE_COLUMNS: tuple[str, ...] = ("open", "high", "low", "close")


def _coerce_time(value: Any) -> Any:
    """Keep integer epochs as int and everything else as the raw text."""
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return int(value)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return text


def _read_csv(path: str | Path) -> pd.DataFrame:
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")
    return pd.read_csv(csv_path, dtype={"time": str})


def bars_from_frame(frame: pd.DataFrame, source: str = "<frame>") -> list[Bar]:
    """Validate a bar DataFrame, sort it stably by time and drop duplicate times (last wins)."""
    columns = {str(column).strip().lower(): column for column in frame.columns}
    missing = sorted(set(REQUIRED_BAR_COLUMNS).difference(columns))
    if missing:
        raise ValueError(f"Bar schema validation failed for {source}: missing columns {missing}")

    data = pd.DataFrame({name: frame[columns[name]] for name in REQUIRED_BAR_COLUMNS})
    data["volume"] = frame[columns["volume"]] if "volume" in columns else 0.0
    data = data.dropna(subset=["time"])

    numeric = data[[*_PRICE_COLUMNS, "volume"]].apply(pd.to_numeric, errors="coerce")
    invalid = numeric[list(_PRICE_COLUMNS)].isna().any(axis=1)
    if invalid.any():
        first_bad = data.loc[invalid, "time"].iloc[0]
        raise ValueError(f"Invalid numeric price in {source} at time {first_bad}")
    data[[*_PRICE_COLUMNS, "volume"]] = numeric.fillna({"volume": 0.0})

    data["time"] = data["time"].map(_coerce_time)
    sort_keys = [time_sort_key(value) for value in data["time"]]
    order = sorted(range(len(data)), key=sort_keys.__getitem__)
    data = data.iloc[order]
    before = len(data)
    data = data.assign(_key=data["time"].map(time_key))
    data = data.drop_duplicates(subset="_key", keep="last").drop(columns="_key")
    if len(data) != before:
        logger.warning("Dropped %s duplicate bar times from %s", before - len(data), source)

    return [
        Bar(
            time=row.time,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in data.itertuples(index=False)
    ]


def load_bars_csv(path: str | Path) -> list[Bar]:
    bars = bars_from_frame(_read_csv(path), source=str(path))
    if not bars:
        raise ValueError(f"Bar file has no valid rows: {path}")
    logger.debug("Loaded %s bars from %s", len(bars), path)
    return bars


def signals_from_frame(frame: pd.DataFrame, source: str = "<frame>") -> list[Signal]:
    columns = {str(column).strip().lower(): column for column in frame.columns}
    missing = sorted(set(REQUIRED_SIGNAL_COLUMNS).difference(columns))
    if missing:
        raise ValueError(f"Signal schema validation failed for {source}: missing columns {missing}")

    signals: list[Signal] = []
    for position, record in enumerate(frame.to_dict(orient="records")):
        row = {str(key).strip().lower(): value for key, value in record.items()}
        row = {key: (None if isinstance(value, float) and np.isnan(value) else value) for key, value in row.items()}
        row["time"] = _coerce_time(row["time"])
        try:
            signals.append(Signal.from_raw(row))
        except ValueError as exc:
            raise ValueError(f"Invalid signal row {position + 1} in {source}: {exc}") from exc
    return signals


def load_signals_csv(path: str | Path) -> list[Signal]:
    signals = signals_from_frame(_read_csv(path), source=str(path))
    logger.debug("Loaded %s signals from %s", len(signals), path)
    return signals
