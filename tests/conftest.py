# tests/conftest.py
from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tradesim.models import Bar  # noqa: E402
from tradesim.precompute import IndicatorRequirements, IndicatorSeries  # noqa: E402


@pytest.fixture(autouse=True)
def quiet_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()


def _bars(rows, start_day: int = 1) -> list[Bar]:
    """Rows are (open, high, low, close) or (time, open, high, low, close)."""
    bars: list[Bar] = []
    for offset, row in enumerate(rows):
        if len(row) == 5:
            time, open_, high, low, close = row
        else:
            time = f"2024-01-{start_day + offset:02d}"
            open_, high, low, close = row
        bars.append(Bar(time=time, open=open_, high=high, low=low, close=close, volume=1000.0))
    return bars


@pytest.fixture
def make_bars():
    return _bars


@pytest.fixture
def flat_bars():
    """Five bars pinned at 100 except a spike to 115 on the fourth bar."""
    rows = [(100.0, 100.0, 100.0, 100.0)] * 5
    rows[3] = (100.0, 115.0, 100.0, 100.0)
    return _bars(rows)


@pytest.fixture
def synthetic_atr():
    """Builds a constant-ATR indicator series that the engine accepts as precomputed."""

    def _build(length: int, value: float = 10.0, period: int = 14) -> IndicatorSeries:
        values = np.full(length, value, dtype=float)
        values.setflags(write=False)
        return IndicatorSeries(
            data_length=length,
            requirements=IndicatorRequirements(atr_period=period),
            atr=values,
        )

    return _build


@pytest.fixture
def trending_bars():
    """Sixty bars with a steady up drift and small oscillation."""
    rows = []
    price = 100.0
    for index in range(60):
        swing = 1.5 if index % 3 == 0 else -0.5
        close = price + swing
        rows.append(
            (
                f"2024-02-{1 + index // 24:02d}T{index % 24:02d}:00:00",
                price,
                max(price, close) + 1.0,
                min(price, close) - 1.0,
                close,
            )
        )
        price = close
    return _bars(rows)
