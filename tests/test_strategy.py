from pathlib import Path

import pytest

from tradesim import Signal, SignalType, StrategyRegistry, load_strategy_class, run_backtest

ROOT = Path(__file__).resolve().parents[1]
TEMPLATE = "strategies/00_template_sma_cross/strategy.py:TemplateSmaCrossStrategy"


class _AlwaysBuy:
    def execute(self, bars, params):
        return [{"time": bars[0].time, "type": "buy", "price": bars[0].close}]


def test_register_and_generate(make_bars):
    registry = StrategyRegistry()
    registry.register("always_buy", _AlwaysBuy())
    bars = make_bars([(100.0, 101.0, 99.0, 100.0)])

    signals = registry.generate("always_buy", bars)

    assert "always_buy" in registry
    assert registry.keys() == ["always_buy"]
    assert signals == [Signal(time="2024-01-01", type=SignalType.BUY, price=100.0)]


def test_duplicate_and_invalid_registrations_are_rejected():
    registry = StrategyRegistry({"a": _AlwaysBuy()})

    with pytest.raises(ValueError):
        registry.register("a", _AlwaysBuy())
    with pytest.raises(ValueError):
        registry.register("  ", _AlwaysBuy())
    with pytest.raises(TypeError):
        registry.register("b", object())

    registry.register("a", _AlwaysBuy(), replace=True)
    assert len(registry) == 1


def test_unknown_key_raises_key_error():
    with pytest.raises(KeyError):
        StrategyRegistry().get("missing")


def test_registries_are_independent():
    first = StrategyRegistry()
    second = StrategyRegistry()
    first.register("a", _AlwaysBuy())

    assert "a" not in second


def test_load_from_file_path(make_bars):
    closes = [120.0 - index for index in range(20)] + [101.0 + index for index in range(20)]
    bars = make_bars([(f"2024-03-{index + 1:02d}", c, c + 0.5, c - 0.5, c) for index, c in enumerate(closes[:31])])
    registry = StrategyRegistry()

    strategy = registry.load("sma", TEMPLATE, base_dir=ROOT)
    signals = registry.generate("sma", bars, {"fast_period": 3, "slow_period": 8})

    assert type(strategy).__name__ == "TemplateSmaCrossStrategy"
    assert [item.type for item in signals] == [SignalType.BUY]
    assert signals[0].reason == "sma_cross"
    result = run_backtest(bars, signals, 10_000, 100, 0)
    assert result.total_trades == 1


def test_load_from_module_path():
    cls = load_strategy_class("tradesim.strategy:StrategyRegistry")

    assert cls is StrategyRegistry


@pytest.mark.parametrize(
    "spec,error",
    [
        ("", ValueError),
        ("nocolon", ValueError),
        ("missing/file.py:Thing", FileNotFoundError),
        ("tradesim.strategy:DoesNotExist", ImportError),
    ],
)
def test_load_errors(spec, error):
    with pytest.raises(error):
        load_strategy_class(spec, base_dir=ROOT)


def test_template_rejects_bad_periods(make_bars):
    registry = StrategyRegistry()
    registry.load("sma", TEMPLATE, base_dir=ROOT)

    with pytest.raises(ValueError):
        registry.generate("sma", make_bars([(1.0, 1.0, 1.0, 1.0)]), {"fast_period": 10, "slow_period": 5})
