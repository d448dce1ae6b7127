"""Indicator precomputation and reuse across repeated engine calls."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Hashable, Mapping, Sequence

import numpy as np

from . import indicators
from .models import Bar, BarSeries
from .settings import BacktestSettings, NormalizedSettings, TradeFilterMode, normalize_settings

logger = logging.getLogger(__name__)

SettingsLike = BacktestSettings | NormalizedSettings | Mapping[str, Any] | None
BarsLike = Sequence[Bar] | Sequence[Mapping[str, Any]] | BarSeries
_CacheKey = tuple[Hashable, int, "IndicatorRequirements"]


@dataclass(frozen=True)
class IndicatorRequirements:
    """Which indicators a settings record needs, with the period each one uses (None = unused)."""

    atr_period: int | None = None
    trend_period: int | None = None
    adx_period: int | None = None
    volume_sma_period: int | None = None
    rsi_period: int | None = None

    @classmethod
    def from_settings(cls, settings: NormalizedSettings) -> "IndicatorRequirements":
        trend_period = settings.trend_period
        return cls(
            atr_period=settings.atr_period if settings.needs_atr else None,
            trend_period=trend_period if trend_period > 0 else None,
            adx_period=settings.adx_period if settings.uses_adx else None,
            volume_sma_period=(
                settings.volume_sma_period if settings.trade_filter_mode is TradeFilterMode.VOLUME else None
            ),
            rsi_period=settings.rsi_period if settings.trade_filter_mode is TradeFilterMode.RSI else None,
        )


@dataclass(frozen=True, eq=False)
class IndicatorSeries:
    """Read-only indicator arrays aligned by bar index; ``None`` for indicators not required."""

    data_length: int
    requirements: IndicatorRequirements
    atr: np.ndarray | None = None
    ema_trend: np.ndarray | None = None
    adx: np.ndarray | None = None
    volume_sma: np.ndarray | None = None
    rsi: np.ndarray | None = None

    def names(self) -> list[str]:
        return [
            name
            for name in ("atr", "ema_trend", "adx", "volume_sma", "rsi")
            if getattr(self, name) is not None
        ]


def value_at(series: np.ndarray | None, index: int) -> float | None:
    """Indicator value at ``index``, or None when absent, out of range or still warming up."""
    if series is None or index < 0 or index >= series.size:
        return None
    value = float(series[index])
    if np.isnan(value):
        return None
    return value


def _frozen(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


def _compute(name: str, period: int, bars: BarSeries) -> np.ndarray:
    if name == "atr":
        values = indicators.atr(bars.high, bars.low, bars.close, period)
    elif name == "ema_trend":
        values = indicators.ema(bars.close, period)
    elif name == "adx":
        values = indicators.adx(bars.high, bars.low, bars.close, period)
    elif name == "volume_sma":
        values = indicators.sma(bars.volume, period)
    elif name == "rsi":
        values = indicators.rsi(bars.close, period)
    else:
        raise ValueError(f"Unknown indicator: {name}")
    return _frozen(values)


_REQUIREMENT_FIELDS: tuple[tuple[str, str], ...] = (
    ("atr", "atr_period"),
    ("ema_trend", "trend_period"),
    ("adx", "adx_period"),
    ("volume_sma", "volume_sma_period"),
    ("rsi", "rsi_period"),
)


def precompute_indicators(bars: BarsLike, settings: SettingsLike = None) -> IndicatorSeries:
    """Compute exactly the indicator series the settings require."""
    series = BarSeries.from_bars(bars)
    requirements = IndicatorRequirements.from_settings(normalize_settings(settings))
    computed: dict[str, np.ndarray] = {}
    for name, period_field in _REQUIREMENT_FIELDS:
        period = getattr(requirements, period_field)
        if period is not None:
            computed[name] = _compute(name, period, series)
    return IndicatorSeries(data_length=series.rows, requirements=requirements, **computed)


def resolve_indicators(
    bars: BarsLike,
    settings: SettingsLike = None,
    precomputed: IndicatorSeries | None = None,
) -> IndicatorSeries:
    """Reuse ``precomputed`` series that still match the data and settings, recompute the rest.

    A precomputed series is reused only when its ``data_length`` equals the
    current bar count, the array has that length, and it was built with the
    same period. The result is identical to a fresh ``precompute_indicators``.
    """
    series = BarSeries.from_bars(bars)
    requirements = IndicatorRequirements.from_settings(normalize_settings(settings))
    usable = precomputed is not None and precomputed.data_length == series.rows

    resolved: dict[str, np.ndarray] = {}
    reused: list[str] = []
    for name, period_field in _REQUIREMENT_FIELDS:
        period = getattr(requirements, period_field)
        if period is None:
            continue
        cached = getattr(precomputed, name) if usable else None
        if (
            cached is not None
            and cached.size == series.rows
            and getattr(precomputed.requirements, period_field) == period
        ):
            resolved[name] = cached
            reused.append(name)
        else:
            resolved[name] = _compute(name, period, series)

    if precomputed is not None and not usable:
        logger.debug(
            "Discarding stale indicators: data_length=%s, bars=%s",
            precomputed.data_length,
            series.rows,
        )
    elif reused:
        logger.debug("Reusing precomputed indicators: %s", ", ".join(reused))
    return IndicatorSeries(data_length=series.rows, requirements=requirements, **resolved)


class IndicatorCache:
    """Thread-safe LRU memo of indicator series keyed by dataset, length and requirements.

    Cached arrays are read-only, so a single cache may be shared by worker
    threads running independent simulations over the same bars. Without a
    ``dataset_key`` an entry is bound to the bar object itself: it holds a
    reference to it and only serves that same object.
    """

    def __init__(self, max_entries: int = 64):
        self.max_entries = max(1, int(max_entries))
        self.hits = 0
        self.misses = 0
        self._entries: OrderedDict[_CacheKey, tuple[Any, IndicatorSeries]] = OrderedDict()
        self._loading: set[_CacheKey] = set()
        self._lock = threading.RLock()
        self._cv = threading.Condition(self._lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def get_or_compute(
        self,
        bars: BarsLike,
        settings: SettingsLike = None,
        dataset_key: Hashable | None = None,
    ) -> IndicatorSeries:
        """Return cached indicators for ``bars``; ``dataset_key`` defaults to the identity of ``bars``."""
        requirements = IndicatorRequirements.from_settings(normalize_settings(settings))
        by_identity = dataset_key is None
        key = (id(bars) if by_identity else dataset_key, len(bars), requirements)
        owner = bars if by_identity else None

        with self._cv:
            while key in self._loading:
                self._cv.wait()
            entry = self._entries.get(key)
            if entry is not None and entry[0] is owner:
                self._entries.move_to_end(key)
                self.hits += 1
                return entry[1]
            if entry is not None:
                del self._entries[key]
                logger.debug("Dropped indicator cache entry bound to a different bar object")
            self.misses += 1
            self._loading.add(key)

        try:
            computed = precompute_indicators(bars, settings)
        except Exception:
            with self._cv:
                self._loading.discard(key)
                self._cv.notify_all()
            raise

        with self._cv:
            self._entries[key] = (owner, computed)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug("Evicted indicator cache entry for dataset %s", evicted_key[0])
            self._loading.discard(key)
            self._cv.notify_all()
        return computed
