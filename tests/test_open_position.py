import pytest

from tradesim import ExitReason, PositionSide, get_open_position, prepare_signals_for_scanner, run_backtest

SETTINGS = {"atr_period": 1, "stop_loss_atr": 1, "take_profit_atr": 2, "trade_direction": "long"}


@pytest.fixture
def scanner_bars(make_bars):
    return make_bars(
        [
            (100.0, 101.0, 99.0, 100.0),
            (104.0, 106.0, 102.0, 105.0),
            (106.0, 110.0, 104.0, 108.0),
        ]
    )


def test_forced_close_keeps_protective_levels(scanner_bars):
    signals = [{"time": "2024-01-02", "type": "buy", "price": 105.0}]

    result = run_backtest(scanner_bars, signals, 10_000, 100, 0, SETTINGS)

    last = result.trades[-1]
    assert last.exit_reason is ExitReason.END_OF_DATA
    assert last.stop_loss_price == pytest.approx(99.0)
    assert last.take_profit_price == pytest.approx(117.0)


def test_open_position_reports_levels_and_progress(scanner_bars):
    signals = [{"time": "2024-01-02", "type": "buy", "price": 105.0}]

    result = run_backtest(scanner_bars, signals, 10_000, 100, 0, SETTINGS)
    position = get_open_position(scanner_bars, signals, SETTINGS)

    assert position is not None
    assert position.direction is PositionSide.LONG
    assert position.entry_price == pytest.approx(105.0)
    assert position.current_price == pytest.approx(108.0)
    assert position.bars_in_trade == 1
    assert position.unrealized_pnl_percent == pytest.approx(3 / 105 * 100)
    assert position.stop_loss_price == pytest.approx(result.trades[-1].stop_loss_price)
    assert position.take_profit_price == pytest.approx(result.trades[-1].take_profit_price)


def test_no_open_position_after_signal_exit(scanner_bars):
    signals = [
        {"time": "2024-01-01", "type": "buy", "price": 100.0},
        {"time": "2024-01-02", "type": "sell", "price": 105.0},
    ]

    assert get_open_position(scanner_bars, signals) is None
    assert get_open_position(scanner_bars, []) is None


def test_percent_take_profit_fills_in_missing_target(scanner_bars):
    signals = [{"time": "2024-01-02", "type": "buy", "price": 105.0}]
    settings = {"risk_mode": "percentage", "take_profit_enabled": True, "take_profit_percent": 10}

    position = get_open_position(scanner_bars, signals, settings)

    assert position is not None
    assert position.take_profit_price == pytest.approx(115.5)
    assert position.stop_loss_price is None


def test_scanner_queue_matches_engine_preparation(scanner_bars):
    signals = [
        {"time": "2024-01-01", "type": "buy", "price": 100.0},
        {"time": "2024-01-09", "type": "buy", "price": 100.0},
        {"time": "2024-01-02", "type": "sell", "price": 105.0},
    ]

    prepared = prepare_signals_for_scanner(scanner_bars, signals, {"execution_model": "next_close"})

    assert [(item.bar_index, item.type.value) for item in prepared] == [(1, "buy"), (2, "sell")]
    assert prepared[0].price == pytest.approx(105.0)
    assert prepared[0].trigger_price == pytest.approx(100.0)
