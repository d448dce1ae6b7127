"""Sparse backtest settings and their normalisation into a fully resolved record.

``normalize_settings`` never raises: unknown or malformed values fall back to
defaults and numeric knobs are clamped into range. Rule knobs that can be
switched off are represented as ``None`` rather than a zero sentinel.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, TypeVar

MARKET_MODE_DEFAULT_EMA_PERIOD = 200
TRADE_FILTER_DEFAULT_TREND_EMA_PERIOD = 50

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off", ""}

E = TypeVar("E", bound=Enum)


class RiskMode(str, Enum):
    SIMPLE = "simple"
    ADVANCED = "advanced"
    PERCENTAGE = "percentage"


class TradeFilterMode(str, Enum):
    NONE = "none"
    CLOSE = "close"
    VOLUME = "volume"
    RSI = "rsi"
    TREND = "trend"
    ADX = "adx"


class MarketMode(str, Enum):
    ALL = "all"
    UPTREND = "uptrend"
    DOWNTREND = "downtrend"
    SIDEWAY = "sideway"


class ExecutionModel(str, Enum):
    SIGNAL_CLOSE = "signal_close"
    NEXT_OPEN = "next_open"
    NEXT_CLOSE = "next_close"


class TradeDirection(str, Enum):
    LONG = "long"
    SHORT = "short"
    BOTH = "both"
    COMBINED = "combined"

    @property
    def is_single_side(self) -> bool:
        return self in (TradeDirection.LONG, TradeDirection.SHORT)


class SizingMode(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", str(key)).lower()


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and math.isfinite(value):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return default


def _coerce_enum(enum_cls: type[E], value: Any, default: E) -> E:
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def _number_or(value: Any, default: float) -> float:
    number = _coerce_float(value)
    return default if number is None else number


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _period(value: Any, default: int) -> int:
    return max(1, int(_number_or(value, default)))


def _positive(value: Any) -> float | None:
    number = _coerce_float(value)
    if number is None or number <= 0:
        return None
    return number


def _positive_int(value: Any) -> int | None:
    number = _positive(value)
    if number is None:
        return None
    whole = int(number)
    return whole if whole > 0 else None


@dataclass
class BacktestSettings:
    """Caller-facing settings; every field may be left unset."""

    atr_period: Any = None
    stop_loss_atr: Any = None
    take_profit_atr: Any = None
    trailing_atr: Any = None
    partial_take_profit_at_r: Any = None
    partial_take_profit_percent: Any = None
    break_even_at_r: Any = None
    time_stop_bars: Any = None

    risk_mode: Any = None
    stop_loss_percent: Any = None
    take_profit_percent: Any = None
    stop_loss_enabled: Any = None
    take_profit_enabled: Any = None

    trend_ema_period: Any = None
    trend_ema_slope_bars: Any = None
    atr_percent_min: Any = None
    atr_percent_max: Any = None
    adx_period: Any = None
    adx_min: Any = None
    adx_max: Any = None

    trade_filter_mode: Any = None
    entry_confirmation: Any = None
    confirm_lookback: Any = None
    volume_sma_period: Any = None
    volume_multiplier: Any = None
    rsi_period: Any = None
    rsi_bullish: Any = None
    rsi_bearish: Any = None
    market_mode: Any = None

    execution_model: Any = None
    allow_same_bar_exit: Any = None
    slippage_bps: Any = None
    trade_direction: Any = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "BacktestSettings":
        """Build from snake_case or camelCase keys; unknown keys are ignored."""
        if isinstance(payload, BacktestSettings):
            return payload
        if not payload:
            return cls()
        known = {item.name for item in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in dict(payload).items():
            name = _snake_case(key)
            if name in known:
                values[name] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            payload[item.name] = value.value if isinstance(value, Enum) else value
        return payload

    def with_overrides(self, **overrides: Any) -> "BacktestSettings":
        payload = self.to_dict()
        payload.update(overrides)
        return BacktestSettings.from_dict(payload)


@dataclass(frozen=True)
class NormalizedSettings:
    atr_period: int = 14
    stop_loss_atr: float | None = None
    take_profit_atr: float | None = None
    trailing_atr: float | None = None
    partial_take_profit_at_r: float | None = None
    partial_take_profit_percent: float = 0.0
    break_even_at_r: float | None = None
    time_stop_bars: int | None = None

    risk_mode: RiskMode = RiskMode.SIMPLE
    stop_loss_percent: float | None = None
    take_profit_percent: float | None = None
    stop_loss_enabled: bool = False
    take_profit_enabled: bool = False

    trend_ema_period: int | None = None
    trend_ema_slope_bars: int | None = None
    atr_percent_min: float | None = None
    atr_percent_max: float | None = None
    adx_period: int = 14
    adx_min: float | None = None
    adx_max: float | None = None

    trade_filter_mode: TradeFilterMode = TradeFilterMode.NONE
    confirm_lookback: int = 1
    volume_sma_period: int = 20
    volume_multiplier: float = 1.0
    rsi_period: int = 14
    rsi_bullish: float = 55.0
    rsi_bearish: float = 45.0
    market_mode: MarketMode = MarketMode.ALL

    execution_model: ExecutionModel = ExecutionModel.SIGNAL_CLOSE
    allow_same_bar_exit: bool = True
    slippage_bps: float = 0.0
    trade_direction: TradeDirection = TradeDirection.LONG

    @property
    def position_needs_atr(self) -> bool:
        """True when stops, targets or R-multiples of an open position depend on ATR."""
        return any(
            value is not None
            for value in (
                self.stop_loss_atr,
                self.take_profit_atr,
                self.trailing_atr,
                self.partial_take_profit_at_r,
                self.break_even_at_r,
            )
        )

    @property
    def needs_atr(self) -> bool:
        return self.position_needs_atr or self.atr_percent_min is not None or self.atr_percent_max is not None

    @property
    def uses_adx(self) -> bool:
        return (
            self.trade_filter_mode is TradeFilterMode.ADX
            or self.adx_min is not None
            or self.adx_max is not None
        )

    @property
    def trend_period(self) -> int:
        """EMA period needed by the trend filter or the market-mode classifier, 0 when unused."""
        if self.trend_ema_period is not None:
            return self.trend_ema_period
        if self.trade_filter_mode is TradeFilterMode.TREND:
            return TRADE_FILTER_DEFAULT_TREND_EMA_PERIOD
        if self.market_mode is MarketMode.ALL:
            return 0
        return MARKET_MODE_DEFAULT_EMA_PERIOD

    @property
    def execution_shift(self) -> int:
        return 0 if self.execution_model is ExecutionModel.SIGNAL_CLOSE else 1

    @property
    def slippage_rate(self) -> float:
        return self.slippage_bps / 10_000

    @property
    def percent_stop_loss(self) -> float | None:
        if self.risk_mode is RiskMode.PERCENTAGE and self.stop_loss_enabled:
            return self.stop_loss_percent
        return None

    @property
    def percent_take_profit(self) -> float | None:
        if self.risk_mode is RiskMode.PERCENTAGE and self.take_profit_enabled:
            return self.take_profit_percent
        return None

    def for_direction(self, direction: TradeDirection) -> "NormalizedSettings":
        return replace(self, trade_direction=direction)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            payload[item.name] = value.value if isinstance(value, Enum) else value
        return payload


def normalize_settings(settings: BacktestSettings | Mapping[str, Any] | NormalizedSettings | None = None) -> NormalizedSettings:
    """Resolve a sparse settings object into ``NormalizedSettings``."""
    if isinstance(settings, NormalizedSettings):
        return settings
    raw = settings if isinstance(settings, BacktestSettings) else BacktestSettings.from_dict(settings)

    filter_value = raw.trade_filter_mode if raw.trade_filter_mode is not None else raw.entry_confirmation

    return NormalizedSettings(
        atr_period=_period(raw.atr_period, 14),
        stop_loss_atr=_positive(raw.stop_loss_atr),
        take_profit_atr=_positive(raw.take_profit_atr),
        trailing_atr=_positive(raw.trailing_atr),
        partial_take_profit_at_r=_positive(raw.partial_take_profit_at_r),
        partial_take_profit_percent=_clamp(_number_or(raw.partial_take_profit_percent, 0.0), 0.0, 100.0),
        break_even_at_r=_positive(raw.break_even_at_r),
        time_stop_bars=_positive_int(raw.time_stop_bars),
        risk_mode=_coerce_enum(RiskMode, raw.risk_mode, RiskMode.SIMPLE),
        stop_loss_percent=_positive(raw.stop_loss_percent),
        take_profit_percent=_positive(raw.take_profit_percent),
        stop_loss_enabled=_coerce_bool(raw.stop_loss_enabled, False),
        take_profit_enabled=_coerce_bool(raw.take_profit_enabled, False),
        trend_ema_period=_positive_int(raw.trend_ema_period),
        trend_ema_slope_bars=_positive_int(raw.trend_ema_slope_bars),
        atr_percent_min=_positive(raw.atr_percent_min),
        atr_percent_max=_positive(raw.atr_percent_max),
        adx_period=_period(raw.adx_period, 14),
        adx_min=_positive(raw.adx_min),
        adx_max=_positive(raw.adx_max),
        trade_filter_mode=_coerce_enum(TradeFilterMode, filter_value, TradeFilterMode.NONE),
        confirm_lookback=_period(raw.confirm_lookback, 1),
        volume_sma_period=_period(raw.volume_sma_period, 20),
        volume_multiplier=max(0.0, _number_or(raw.volume_multiplier, 1.0)),
        rsi_period=_period(raw.rsi_period, 14),
        rsi_bullish=_clamp(_number_or(raw.rsi_bullish, 55.0), 0.0, 100.0),
        rsi_bearish=_clamp(_number_or(raw.rsi_bearish, 45.0), 0.0, 100.0),
        market_mode=_coerce_enum(MarketMode, raw.market_mode, MarketMode.ALL),
        execution_model=_coerce_enum(ExecutionModel, raw.execution_model, ExecutionModel.SIGNAL_CLOSE),
        allow_same_bar_exit=_coerce_bool(raw.allow_same_bar_exit, True),
        slippage_bps=max(0.0, _number_or(raw.slippage_bps, 0.0)),
        trade_direction=_coerce_enum(TradeDirection, raw.trade_direction, TradeDirection.LONG),
    )


@dataclass(frozen=True)
class TradeSizing:
    mode: SizingMode = SizingMode.PERCENT
    fixed_trade_amount: float = 0.0

    @classmethod
    def from_raw(cls, value: Any | None) -> "TradeSizing":
        if isinstance(value, TradeSizing):
            return value
        if not isinstance(value, Mapping):
            return cls()
        amount = value.get("fixed_trade_amount", value.get("fixedTradeAmount"))
        return cls(
            mode=_coerce_enum(SizingMode, value.get("mode"), SizingMode.PERCENT),
            fixed_trade_amount=max(0.0, _number_or(amount, 0.0)),
        )

    def allocation(self, capital: float, position_size_percent: float) -> float:
        if self.mode is SizingMode.FIXED and self.fixed_trade_amount > 0:
            return self.fixed_trade_amount
        return capital * (position_size_percent / 100)

    def to_dict(self) -> dict[str, Any]:
        return {"mode": self.mode.value, "fixed_trade_amount": self.fixed_trade_amount}


@dataclass(frozen=True)
class RunParameters:
    """Capital and cost inputs shared by every book of one engine call."""

    initial_capital: float
    position_size_percent: float
    commission_percent: float
    sizing: TradeSizing = field(default_factory=TradeSizing)

    @property
    def commission_rate(self) -> float:
        return self.commission_percent / 100
