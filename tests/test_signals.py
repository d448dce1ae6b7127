import numpy as np
import pytest

from tradesim import BarSeries, Signal, normalize_settings, prepare_signals
from tradesim.filters import market_regime_flags, passes_regime_filters, passes_trade_filter
from tradesim.models import PositionSide, SignalType
from tradesim.precompute import IndicatorRequirements, IndicatorSeries, precompute_indicators
from tradesim.settings import TradeDirection


def _prepare(bars, signals, settings=None, direction=None):
    series = BarSeries.from_bars(bars)
    normalized = normalize_settings(settings)
    return prepare_signals(series, signals, normalized, precompute_indicators(series, normalized), direction)


@pytest.fixture
def five_bars(make_bars):
    return make_bars(
        [
            (100.0, 101.0, 99.0, 100.0),
            (101.0, 103.0, 100.0, 102.0),
            (102.0, 106.0, 101.0, 105.0),
            (105.0, 106.0, 103.0, 104.0),
            (104.0, 105.0, 98.0, 99.0),
        ]
    )


def test_signal_close_keeps_signal_price(five_bars):
    prepared = _prepare(five_bars, [{"time": "2024-01-02", "type": "buy", "price": 101.5}])

    assert len(prepared) == 1
    assert prepared[0].bar_index == 1
    assert prepared[0].price == 101.5
    assert prepared[0].time == "2024-01-02"


@pytest.mark.parametrize("model,price", [("next_open", 102.0), ("next_close", 105.0)])
def test_next_bar_models_shift_execution(five_bars, model, price):
    prepared = _prepare(
        five_bars, [{"time": "2024-01-02", "type": "buy", "price": 101.5}], {"execution_model": model}
    )

    assert prepared[0].bar_index == 2
    assert prepared[0].price == price
    assert prepared[0].trigger_price == 101.5


def test_signal_on_last_bar_cannot_shift(five_bars):
    prepared = _prepare(
        five_bars, [{"time": "2024-01-05", "type": "buy", "price": 99.0}], {"execution_model": "next_open"}
    )

    assert prepared == []


def test_unknown_times_and_out_of_range_indexes_are_dropped(five_bars):
    signals = [
        {"time": "2023-12-31", "type": "buy", "price": 1.0},
        {"time": "whatever", "type": "buy", "price": 1.0, "bar_index": 9},
        {"time": "whatever", "type": "buy", "price": 1.0, "barIndex": 3},
    ]

    prepared = _prepare(five_bars, signals)

    assert [item.bar_index for item in prepared] == [3]
    assert prepared[0].time == "2024-01-04"


def test_queue_is_sorted_by_bar_then_input_order(five_bars):
    signals = [
        {"time": "2024-01-04", "type": "sell", "price": 104.0},
        {"time": "2024-01-02", "type": "sell", "price": 102.0},
        {"time": "2024-01-02", "type": "buy", "price": 102.0},
    ]

    prepared = _prepare(five_bars, signals, {"trade_direction": "both"})

    assert [(item.bar_index, item.order) for item in prepared] == [(1, 1), (1, 2), (3, 0)]


def test_close_filter_decides_on_next_bar(five_bars):
    # Bar 2 closes at 105, above the high of bar 1, so a buy on bar 1 passes and executes on bar 2.
    prepared = _prepare(
        five_bars, [{"time": "2024-01-02", "type": "buy", "price": 102.0}], {"trade_filter_mode": "close"}
    )

    assert [item.bar_index for item in prepared] == [2]
    assert prepared[0].price == 105.0


def test_close_filter_rejects_unconfirmed_entry(five_bars):
    prepared = _prepare(
        five_bars, [{"time": "2024-01-03", "type": "buy", "price": 105.0}], {"trade_filter_mode": "close"}
    )

    assert prepared == []


def test_single_side_exits_skip_filters(five_bars):
    signals = [{"time": "2024-01-03", "type": "sell", "price": 105.0}]

    long_queue = _prepare(five_bars, signals, {"trade_filter_mode": "close"})
    both_queue = _prepare(five_bars, signals, {"trade_filter_mode": "close", "trade_direction": "both"})

    assert [(item.bar_index, item.type) for item in long_queue] == [(2, SignalType.SELL)]
    assert both_queue == []


def test_direction_argument_overrides_settings(five_bars):
    signals = [{"time": "2024-01-03", "type": "buy", "price": 105.0}]
    settings = {"trade_filter_mode": "close", "trade_direction": "short"}

    assert _prepare(five_bars, signals, settings)[0].bar_index == 2
    assert _prepare(five_bars, signals, settings, TradeDirection.LONG) == []


def _series_with(bars, **arrays):
    return IndicatorSeries(
        data_length=len(bars.times),
        requirements=IndicatorRequirements(),
        **{name: np.asarray(values, dtype=float) for name, values in arrays.items()},
    )


def test_rsi_filter_thresholds(five_bars):
    bars = BarSeries.from_bars(five_bars)
    series = _series_with(bars, rsi=[np.nan, 60, 50, 40, 56])
    settings = normalize_settings({"trade_filter_mode": "rsi"})

    assert passes_trade_filter(bars, 0, settings, series, PositionSide.LONG) is False
    assert passes_trade_filter(bars, 1, settings, series, PositionSide.LONG) is True
    assert passes_trade_filter(bars, 2, settings, series, PositionSide.LONG) is False
    assert passes_trade_filter(bars, 3, settings, series, PositionSide.SHORT) is True
    assert passes_trade_filter(bars, 4, settings, series, PositionSide.SHORT) is False


def test_volume_filter_compares_with_average(five_bars):
    bars = BarSeries.from_bars(five_bars)
    series = _series_with(bars, volume_sma=[np.nan, 900, 1000, 1100, 500])
    settings = normalize_settings({"trade_filter_mode": "volume", "volume_multiplier": 1})

    assert passes_trade_filter(bars, 0, settings, series, PositionSide.LONG) is False
    assert passes_trade_filter(bars, 2, settings, series, PositionSide.LONG) is True
    assert passes_trade_filter(bars, 3, settings, series, PositionSide.LONG) is False


def test_atr_percent_band(five_bars):
    bars = BarSeries.from_bars(five_bars)
    series = _series_with(bars, atr=[1.0, 1.0, 3.0, 5.0, 1.0])
    settings = normalize_settings({"atr_percent_min": 2, "atr_percent_max": 4})

    assert passes_regime_filters(bars, 1, settings, series, PositionSide.LONG) is False
    assert passes_regime_filters(bars, 2, settings, series, PositionSide.LONG) is True
    assert passes_regime_filters(bars, 3, settings, series, PositionSide.LONG) is False


def test_trend_ema_side_and_slope(five_bars):
    bars = BarSeries.from_bars(five_bars)
    series = _series_with(bars, ema_trend=[np.nan, 100.0, 101.0, 102.0, 101.0])
    settings = normalize_settings({"trend_ema_period": 3, "trend_ema_slope_bars": 1})

    assert passes_regime_filters(bars, 2, settings, series, PositionSide.LONG) is True
    assert passes_regime_filters(bars, 2, settings, series, PositionSide.SHORT) is False
    assert passes_regime_filters(bars, 4, settings, series, PositionSide.SHORT) is True
    assert passes_regime_filters(bars, 1, settings, series, PositionSide.LONG) is False


def test_market_regime_needs_slope_history(make_bars):
    bars = BarSeries.from_bars(make_bars([(100.0, 101.0, 99.0, 100.0)] * 25))
    ema = np.full(25, np.nan)
    ema[20:] = 100.0
    ema[0] = 90.0
    ema[4] = 98.0
    series = _series_with(bars, ema_trend=ema)

    assert market_regime_flags(bars, 10, series) is None
    up, down, sideway = market_regime_flags(bars, 24, series)
    # Slope from 98 to 100 is steep, but the close sits on the EMA, so neither trend flag is set.
    assert (up, down, sideway) == (False, False, False)
    up, down, sideway = market_regime_flags(bars, 20, series)
    assert up is False
    assert down is False


def test_signal_from_raw_validation():
    with pytest.raises(ValueError):
        Signal.from_raw({"type": "buy", "price": 1.0})
    with pytest.raises(ValueError):
        Signal.from_raw({"time": "2024-01-01", "type": "hold", "price": 1.0})
    with pytest.raises(ValueError):
        Signal.from_raw({"time": "2024-01-01", "type": "buy", "price": "n/a"})


def test_unknown_signal_types_leave_the_queue(five_bars):
    signals = [
        {"time": "2024-01-02", "type": "flat", "price": 102.0},
        {"time": "2024-01-03", "type": "buy", "price": 105.0},
    ]

    prepared = _prepare(five_bars, signals)

    assert [(item.bar_index, item.type) for item in prepared] == [(2, SignalType.BUY)]
