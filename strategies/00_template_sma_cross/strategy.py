"""Minimal moving-average crossover strategy for the simulator."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np

from tradesim.indicators import sma
from tradesim.models import Bar, Signal, SignalType


class TemplateSmaCrossStrategy:
    """Buy when the fast SMA crosses above the slow SMA, sell on the cross back down."""

    def execute(self, bars: Sequence[Bar], params: Mapping[str, Any]) -> list[Signal]:
        fast_period = int(params.get("fast_period", 10))
        slow_period = int(params.get("slow_period", 30))
        if fast_period <= 0 or slow_period <= fast_period:
            raise ValueError("fast_period must be positive and smaller than slow_period")

        closes = np.array([bar.close for bar in bars], dtype=float)
        fast = sma(closes, fast_period)
        slow = sma(closes, slow_period)

        signals: list[Signal] = []
        for index in range(1, len(bars)):
            if np.isnan(slow[index - 1]) or np.isnan(fast[index - 1]):
                continue
            prev_diff = fast[index - 1] - slow[index - 1]
            diff = fast[index] - slow[index]
            if prev_diff <= 0 < diff:
                signal_type = SignalType.BUY
            elif prev_diff >= 0 > diff:
                signal_type = SignalType.SELL
            else:
                continue
            signals.append(
                Signal(
                    time=bars[index].time,
                    type=signal_type,
                    price=float(bars[index].close),
                    bar_index=index,
                    reason="sma_cross",
                )
            )
        return signals
