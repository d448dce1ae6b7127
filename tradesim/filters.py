"""Entry gates evaluated at a signal's decision bar."""

from __future__ import annotations

from .models import BarSeries, PositionSide
from .precompute import IndicatorSeries, value_at
from .settings import MarketMode, NormalizedSettings, TradeFilterMode

MARKET_MODE_SLOPE_LOOKBACK = 20
MARKET_MODE_SLOPE_THRESHOLD = 0.0008
MARKET_MODE_SIDEWAY_DISTANCE = 0.015
TRADE_FILTER_DEFAULT_ADX_MIN = 20.0


def passes_trade_filter(
    bars: BarSeries,
    index: int,
    settings: NormalizedSettings,
    series: IndicatorSeries,
    side: PositionSide,
) -> bool:
    mode = settings.trade_filter_mode
    is_short = side is PositionSide.SHORT
    close = float(bars.close[index])

    if mode is TradeFilterMode.NONE:
        return True

    if mode is TradeFilterMode.CLOSE:
        # Breakout of the previous confirm_lookback bars.
        if index <= 0:
            return False
        start = max(0, index - settings.confirm_lookback)
        if is_short:
            return close < float(bars.low[start:index].min())
        return close > float(bars.high[start:index].max())

    if mode is TradeFilterMode.VOLUME:
        volume_sma = value_at(series.volume_sma, index)
        if volume_sma is None:
            return False
        return float(bars.volume[index]) >= volume_sma * settings.volume_multiplier

    if mode is TradeFilterMode.RSI:
        rsi = value_at(series.rsi, index)
        if rsi is None:
            return False
        return rsi <= settings.rsi_bearish if is_short else rsi >= settings.rsi_bullish

    if mode is TradeFilterMode.TREND:
        ema = value_at(series.ema_trend, index)
        previous = value_at(series.ema_trend, index - max(1, settings.confirm_lookback))
        if ema is None or previous is None:
            return False
        if is_short:
            return close < ema and ema < previous
        return close > ema and ema > previous

    if mode is TradeFilterMode.ADX:
        adx = value_at(series.adx, index)
        if adx is None:
            return False
        minimum = settings.adx_min if settings.adx_min is not None else TRADE_FILTER_DEFAULT_ADX_MIN
        return adx >= minimum

    return True


def market_regime_flags(bars: BarSeries, index: int, series: IndicatorSeries) -> tuple[bool, bool, bool] | None:
    """(uptrend, downtrend, sideway) flags from the trend EMA and its slope over 20 bars.

    Returns None when the EMA is not defined far enough back to measure the slope.
    """
    ema = value_at(series.ema_trend, index)
    previous = value_at(series.ema_trend, index - MARKET_MODE_SLOPE_LOOKBACK)
    if not ema or not previous:
        return None

    close = float(bars.close[index])
    slope = (ema - previous) / previous
    distance = abs((close - ema) / ema)
    return (
        close > ema and slope >= MARKET_MODE_SLOPE_THRESHOLD,
        close < ema and slope <= -MARKET_MODE_SLOPE_THRESHOLD,
        abs(slope) <= MARKET_MODE_SLOPE_THRESHOLD and distance <= MARKET_MODE_SIDEWAY_DISTANCE,
    )


def _passes_market_mode(
    bars: BarSeries,
    index: int,
    settings: NormalizedSettings,
    series: IndicatorSeries,
    side: PositionSide,
) -> bool:
    mode = settings.market_mode
    if mode is MarketMode.ALL:
        return True
    flags = market_regime_flags(bars, index, series)
    if flags is None:
        return False
    is_uptrend, is_downtrend, is_sideway = flags
    if mode is MarketMode.UPTREND:
        return side is PositionSide.LONG and is_uptrend
    if mode is MarketMode.DOWNTREND:
        return side is PositionSide.SHORT and is_downtrend
    return is_sideway


def passes_regime_filters(
    bars: BarSeries,
    index: int,
    settings: NormalizedSettings,
    series: IndicatorSeries,
    side: PositionSide,
) -> bool:
    is_short = side is PositionSide.SHORT
    close = float(bars.close[index])

    if not _passes_market_mode(bars, index, settings, series, side):
        return False

    if settings.trend_ema_period is not None:
        ema = value_at(series.ema_trend, index)
        if ema is None:
            return False
        if (close >= ema) if is_short else (close <= ema):
            return False
        if settings.trend_ema_slope_bars is not None:
            previous = value_at(series.ema_trend, index - settings.trend_ema_slope_bars)
            if previous is None:
                return False
            if (ema >= previous) if is_short else (ema <= previous):
                return False

    if settings.atr_percent_min is not None or settings.atr_percent_max is not None:
        atr = value_at(series.atr, index)
        if atr is None or close == 0:
            return False
        atr_percent = atr / close * 100
        if settings.atr_percent_min is not None and atr_percent < settings.atr_percent_min:
            return False
        if settings.atr_percent_max is not None and atr_percent > settings.atr_percent_max:
            return False

    if settings.adx_min is not None or settings.adx_max is not None:
        adx = value_at(series.adx, index)
        if adx is None:
            return False
        if settings.adx_min is not None and adx < settings.adx_min:
            return False
        if settings.adx_max is not None and adx > settings.adx_max:
            return False

    return True
