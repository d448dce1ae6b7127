"""Bar-replay trade simulator."""

from .batch import BacktestJob, run_many
from .config import RunConfig
from .engine import get_open_position, run_backtest, run_backtest_compact
from .feeder import bars_from_frame, load_bars_csv, load_signals_csv, signals_from_frame
from .models import (
    BacktestResult,
    Bar,
    BarSeries,
    EquityPoint,
    ExitReason,
    OpenPosition,
    PositionSide,
    PreparedSignal,
    Signal,
    SignalType,
    Trade,
)
from .precompute import IndicatorCache, IndicatorSeries, precompute_indicators
from .settings import (
    BacktestSettings,
    ExecutionModel,
    MarketMode,
    NormalizedSettings,
    RiskMode,
    SizingMode,
    TradeDirection,
    TradeFilterMode,
    TradeSizing,
    normalize_settings,
)
from .signals import prepare_signals, prepare_signals_for_scanner
from .strategy import Strategy, StrategyRegistry, load_strategy_class

__all__ = [
    "BacktestJob",
    "run_many",
    "RunConfig",
    "run_backtest",
    "run_backtest_compact",
    "get_open_position",
    "bars_from_frame",
    "load_bars_csv",
    "load_signals_csv",
    "signals_from_frame",
    "BacktestResult",
    "Bar",
    "BarSeries",
    "EquityPoint",
    "ExitReason",
    "OpenPosition",
    "PositionSide",
    "PreparedSignal",
    "Signal",
    "SignalType",
    "Trade",
    "IndicatorCache",
    "IndicatorSeries",
    "precompute_indicators",
    "BacktestSettings",
    "ExecutionModel",
    "MarketMode",
    "NormalizedSettings",
    "RiskMode",
    "SizingMode",
    "TradeDirection",
    "TradeFilterMode",
    "TradeSizing",
    "normalize_settings",
    "prepare_signals",
    "prepare_signals_for_scanner",
    "Strategy",
    "StrategyRegistry",
    "load_strategy_class",
]
