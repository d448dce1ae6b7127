"""Indicator series used by the entry filters and the risk rules.

All functions return float64 arrays aligned with the input; ``NaN`` marks bars
where the indicator is not yet defined (warm-up).
"""

from __future__ import annotations

import numpy as np


def _as_array(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    tr = high - low
    if tr.size > 1:
        prev_close = close[:-1]
        tr[1:] = np.maximum.reduce(
            [
                high[1:] - low[1:],
                np.abs(high[1:] - prev_close),
                np.abs(low[1:] - prev_close),
            ]
        )
    return tr


def sma(values, period: int) -> np.ndarray:
    data = _as_array(values)
    out = np.full(data.size, np.nan)
    if period < 1:
        return out
    running = 0.0
    for i in range(data.size):
        running += data[i]
        if i >= period:
            running -= data[i - period]
        if i >= period - 1:
            out[i] = running / period
    return out


def ema(values, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first ``period`` values."""
    data = _as_array(values)
    out = np.full(data.size, np.nan)
    if period < 1 or data.size < period:
        return out
    multiplier = 2.0 / (period + 1)
    prev = float(np.sum(data[:period])) / period
    out[period - 1] = prev
    for i in range(period, data.size):
        prev = (data[i] - prev) * multiplier + prev
        out[i] = prev
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def rsi(values, period: int) -> np.ndarray:
    """Wilder RSI; the first value lands on index ``period``."""
    data = _as_array(values)
    out = np.full(data.size, np.nan)
    if period < 1 or data.size < period + 1:
        return out

    changes = np.diff(data[: period + 1])
    avg_gain = float(np.sum(changes[changes > 0])) / period
    avg_loss = float(np.sum(-changes[changes < 0])) / period
    out[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, data.size):
        change = data[i] - data[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = _rsi_value(avg_gain, avg_loss)
    return out


def atr(high, low, close, period: int) -> np.ndarray:
    """Wilder ATR. The first true range is the bar's own high-low span."""
    high_arr, low_arr, close_arr = _as_array(high), _as_array(low), _as_array(close)
    out = np.full(close_arr.size, np.nan)
    if period < 1 or close_arr.size < period:
        return out
    tr = _true_range(high_arr, low_arr, close_arr)
    prev = float(np.sum(tr[:period])) / period
    out[period - 1] = prev
    for i in range(period, close_arr.size):
        prev = (prev * (period - 1) + tr[i]) / period
        out[i] = prev
    return out


def adx(high, low, close, period: int) -> np.ndarray:
    """Wilder ADX; needs ``2 * period`` bars and first lands on index ``2 * period - 1``."""
    high_arr, low_arr, close_arr = _as_array(high), _as_array(low), _as_array(close)
    length = close_arr.size
    out = np.full(length, np.nan)
    if period < 1 or length < period * 2:
        return out

    tr = np.zeros(length)
    plus_dm = np.zeros(length)
    minus_dm = np.zeros(length)
    up_move = high_arr[1:] - high_arr[:-1]
    down_move = low_arr[:-1] - low_arr[1:]
    plus_dm[1:] = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm[1:] = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)
    tr[1:] = _true_range(high_arr, low_arr, close_arr)[1:]

    tr_smooth = float(np.sum(tr[1 : period + 1]))
    plus_smooth = float(np.sum(plus_dm[1 : period + 1]))
    minus_smooth = float(np.sum(minus_dm[1 : period + 1]))

    dx = np.zeros(length)
    for i in range(period, length):
        if i > period:
            tr_smooth = tr_smooth - tr_smooth / period + tr[i]
            plus_smooth = plus_smooth - plus_smooth / period + plus_dm[i]
            minus_smooth = minus_smooth - minus_smooth / period + minus_dm[i]
        plus_di = 0.0 if tr_smooth == 0 else 100.0 * plus_smooth / tr_smooth
        minus_di = 0.0 if tr_smooth == 0 else 100.0 * minus_smooth / tr_smooth
        di_sum = plus_di + minus_di
        dx[i] = 0.0 if di_sum == 0 else 100.0 * abs(plus_di - minus_di) / di_sum

    prev = float(np.sum(dx[period : period * 2])) / period
    out[period * 2 - 1] = prev
    for i in range(period * 2, length):
        prev = (prev * (period - 1) + dx[i]) / period
        out[i] = prev
    return out
