"""Bars, signals, trades and results exchanged with the simulation engine."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from core.time_keys import time_key


def _optional_float(value: Any) -> float | None:
    if value in (None, "", "None"):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _optional_index(value: Any) -> int | None:
    number = _optional_float(value)
    if number is None:
        return None
    return int(math.trunc(number))


class SignalType(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        return isinstance(value, SignalType) or str(value).strip().lower() in {member.value for member in cls}

    @classmethod
    def from_value(cls, value: Any) -> "SignalType":
        if isinstance(value, SignalType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported signal type: {value}") from exc

    @property
    def opposite(self) -> "SignalType":
        return SignalType.SELL if self is SignalType.BUY else SignalType.BUY


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def from_signal(cls, signal_type: SignalType) -> "PositionSide":
        return cls.LONG if signal_type is SignalType.BUY else cls.SHORT

    @property
    def factor(self) -> int:
        return -1 if self is PositionSide.SHORT else 1

    @property
    def entry_signal(self) -> SignalType:
        return SignalType.SELL if self is PositionSide.SHORT else SignalType.BUY

    @property
    def exit_signal(self) -> SignalType:
        return self.entry_signal.opposite

    @property
    def opposite(self) -> "PositionSide":
        return PositionSide.SHORT if self is PositionSide.LONG else PositionSide.LONG


class ExitReason(str, Enum):
    SIGNAL = "signal"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    PARTIAL = "partial"
    TIME_STOP = "time_stop"
    END_OF_DATA = "end_of_data"


@dataclass(frozen=True)
class Bar:
    time: Any
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_raw(cls, value: Any) -> "Bar":
        if isinstance(value, Bar):
            return value
        if not isinstance(value, Mapping):
            raise ValueError(f"Bar must be a mapping with time/open/high/low/close, got {type(value).__name__}")
        try:
            return cls(
                time=value["time"],
                open=float(value["open"]),
                high=float(value["high"]),
                low=float(value["low"]),
                close=float(value["close"]),
                volume=float(value.get("volume") or 0.0),
            )
        except KeyError as exc:
            raise ValueError(f"Bar is missing field {exc.args[0]!r}") from exc

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _readonly(values: Iterable[float]) -> np.ndarray:
    array = np.asarray(list(values), dtype=np.float64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class BarSeries:
    """Immutable columnar bar container built once per engine call."""

    times: tuple[Any, ...]
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray
    time_index: Mapping[str, int] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_bars(cls, bars: "Sequence[Bar | Mapping[str, Any]] | BarSeries") -> "BarSeries":
        if isinstance(bars, BarSeries):
            return bars
        clean = [Bar.from_raw(item) for item in bars if item is not None]
        index: dict[str, int] = {}
        for position, bar in enumerate(clean):
            index[time_key(bar.time)] = position
        return cls(
            times=tuple(bar.time for bar in clean),
            open=_readonly(bar.open for bar in clean),
            high=_readonly(bar.high for bar in clean),
            low=_readonly(bar.low for bar in clean),
            close=_readonly(bar.close for bar in clean),
            volume=_readonly(bar.volume for bar in clean),
            time_index=index,
        )

    @property
    def rows(self) -> int:
        return len(self.times)

    def __len__(self) -> int:
        return len(self.times)

    def index_of(self, time: Any) -> int | None:
        return self.time_index.get(time_key(time))

    def bar(self, index: int) -> Bar:
        return Bar(
            time=self.times[index],
            open=float(self.open[index]),
            high=float(self.high[index]),
            low=float(self.low[index]),
            close=float(self.close[index]),
            volume=float(self.volume[index]),
        )

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "time": list(self.times),
                "open": self.open,
                "high": self.high,
                "low": self.low,
                "close": self.close,
                "volume": self.volume,
            }
        )


@dataclass(frozen=True)
class Signal:
    time: Any
    type: SignalType
    price: float
    bar_index: int | None = None
    reason: str | None = None
    trigger_price: float | None = None

    @classmethod
    def from_raw(cls, value: Any) -> "Signal":
        if isinstance(value, Signal):
            return value
        if not isinstance(value, Mapping):
            raise ValueError(f"Signal must be a mapping, got {type(value).__name__}")
        if "time" not in value:
            raise ValueError("Signal is missing field 'time'")
        price = _optional_float(value.get("price"))
        if price is None:
            raise ValueError(f"Signal at {value.get('time')} has no numeric price")
        bar_index = value.get("bar_index", value.get("barIndex"))
        trigger_price = value.get("trigger_price", value.get("triggerPrice"))
        reason = value.get("reason")
        return cls(
            time=value["time"],
            type=SignalType.from_value(value.get("type")),
            price=price,
            bar_index=_optional_index(bar_index),
            reason=None if reason in (None, "") else str(reason),
            trigger_price=_optional_float(trigger_price),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "type": self.type.value,
            "price": self.price,
            "bar_index": self.bar_index,
            "reason": self.reason,
            "trigger_price": self.trigger_price,
        }


@dataclass(frozen=True)
class PreparedSignal:
    """A signal resolved to the bar and price it executes at."""

    time: Any
    type: SignalType
    price: float
    bar_index: int
    order: int
    trigger_price: float | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "type": self.type.value,
            "price": self.price,
            "bar_index": self.bar_index,
            "order": self.order,
            "trigger_price": self.trigger_price,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Trade:
    id: int
    type: PositionSide
    entry_time: Any
    entry_price: float
    exit_time: Any
    exit_price: float
    pnl: float
    pnl_percent: float
    size: float
    fees: float
    exit_reason: ExitReason
    stop_loss_price: float | None = None
    take_profit_price: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        payload["exit_reason"] = self.exit_reason.value
        return payload


@dataclass(frozen=True)
class EquityPoint:
    time: Any
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "value": self.value}


@dataclass(frozen=True)
class OpenPosition:
    """Position still open on the final bar, as seen by a market scanner."""

    direction: PositionSide
    entry_time: Any
    entry_price: float
    current_price: float
    unrealized_pnl_percent: float
    bars_in_trade: int
    stop_loss_price: float | None
    take_profit_price: float | None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["direction"] = self.direction.value
        return payload


_TRADE_COLUMNS = [
    "id",
    "type",
    "entry_time",
    "entry_price",
    "exit_time",
    "exit_price",
    "pnl",
    "pnl_percent",
    "size",
    "fees",
    "exit_reason",
    "stop_loss_price",
    "take_profit_price",
]


@dataclass
class BacktestResult:
    trades: list[Trade] = field(default_factory=list)
    net_profit: float = 0.0
    net_profit_percent: float = 0.0
    win_rate: float = 0.0
    expectancy: float = 0.0
    avg_trade: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    sharpe_ratio: float = 0.0
    equity_curve: list[EquityPoint] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "BacktestResult":
        return cls()

    def summary(self) -> dict[str, Any]:
        """Scalar statistics only."""
        payload = self.to_dict()
        payload.pop("trades")
        payload.pop("equity_curve")
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "trades": [trade.to_dict() for trade in self.trades],
            "net_profit": self.net_profit,
            "net_profit_percent": self.net_profit_percent,
            "win_rate": self.win_rate,
            "expectancy": self.expectancy,
            "avg_trade": self.avg_trade,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
            "max_drawdown_percent": self.max_drawdown_percent,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "avg_win": self.avg_win,
            "avg_loss": self.avg_loss,
            "sharpe_ratio": self.sharpe_ratio,
            "equity_curve": [point.to_dict() for point in self.equity_curve],
        }

    def trades_frame(self) -> pd.DataFrame:
        return pd.DataFrame([trade.to_dict() for trade in self.trades], columns=_TRADE_COLUMNS)

    def equity_frame(self) -> pd.DataFrame:
        return pd.DataFrame([point.to_dict() for point in self.equity_curve], columns=["time", "value"])
