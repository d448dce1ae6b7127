"""Position construction, intrabar exit rules and the single-position book."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from .models import Bar, ExitReason, PositionSide, PreparedSignal, SignalType
from .precompute import value_at
from .settings import NormalizedSettings, RiskMode, RunParameters, TradeDirection

ExitCallback = Callable[[float, float, ExitReason], None]


def apply_slippage(price: float, side: SignalType, slippage_rate: float) -> float:
    """Move a fill against the trader: buys fill higher, sells lower."""
    if not math.isfinite(slippage_rate) or slippage_rate <= 0:
        return price
    return price * (1 + slippage_rate) if side is SignalType.BUY else price * (1 - slippage_rate)


def allows_signal_as_entry(signal_type: SignalType, direction: TradeDirection) -> bool:
    if direction is TradeDirection.LONG:
        return signal_type is SignalType.BUY
    if direction is TradeDirection.SHORT:
        return signal_type is SignalType.SELL
    return True


@dataclass
class PositionState:
    side: PositionSide
    entry_time: Any
    entry_index: int
    entry_price: float
    size: float
    entry_commission_per_share: float
    stop_loss_price: float | None
    take_profit_price: float | None
    risk_per_share: float
    extreme_price: float
    partial_target_price: float | None = None
    bars_in_trade: int = 0
    partial_taken: bool = False
    break_even_applied: bool = False

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.entry_price) * self.size * self.side.factor


@dataclass(frozen=True)
class BuiltPosition:
    position: PositionState
    entry_commission: float


@dataclass(frozen=True)
class ExitDetails:
    size: float
    total_pnl: float
    pnl_percent: float
    commission: float
    entry_commission: float
    raw_pnl: float
    fees: float


def exit_details(position: PositionState, exit_price: float, exit_size: float, commission_rate: float) -> ExitDetails:
    size = min(exit_size, position.size)
    exit_value = size * exit_price
    entry_value = size * position.entry_price
    commission = exit_value * commission_rate
    entry_commission = position.entry_commission_per_share * size
    raw_pnl = (exit_value - entry_value) * position.side.factor
    return ExitDetails(
        size=size,
        total_pnl=raw_pnl - entry_commission - commission,
        pnl_percent=raw_pnl / entry_value * 100 if entry_value > 0 else 0.0,
        commission=commission,
        entry_commission=entry_commission,
        raw_pnl=raw_pnl,
        fees=entry_commission + commission,
    )


def build_position(
    signal: PreparedSignal,
    bar_index: int,
    capital: float,
    params: RunParameters,
    settings: NormalizedSettings,
    atr_series: np.ndarray | None,
    direction: TradeDirection | None = None,
) -> BuiltPosition | None:
    """Size and arm a new position, or None when the entry cannot execute."""
    if not allows_signal_as_entry(signal.type, direction or settings.trade_direction):
        return None

    atr = value_at(atr_series, bar_index) if settings.position_needs_atr else None
    if settings.position_needs_atr and atr is None:
        return None

    allocated = params.sizing.allocation(capital, params.position_size_percent)
    if not math.isfinite(allocated) or allocated <= 0:
        return None

    commission_rate = params.commission_rate
    trade_value = allocated / (1 + commission_rate)
    entry_commission = trade_value * commission_rate
    side = PositionSide.from_signal(signal.type)
    factor = side.factor
    fill_price = apply_slippage(signal.price, signal.type, settings.slippage_rate)
    if not math.isfinite(fill_price) or fill_price <= 0 or not math.isfinite(trade_value) or trade_value <= 0:
        return None

    shares = trade_value / fill_price
    if not math.isfinite(shares) or shares <= 0:
        return None

    stop_loss = None
    take_profit = None
    risk_per_share = 0.0
    if atr is not None:
        if settings.stop_loss_atr is not None:
            stop_loss = fill_price - factor * settings.stop_loss_atr * atr
            risk_per_share = settings.stop_loss_atr * atr
        elif settings.trailing_atr is not None:
            stop_loss = fill_price - factor * settings.trailing_atr * atr
        if settings.take_profit_atr is not None:
            take_profit = fill_price + factor * settings.take_profit_atr * atr

    percent_stop = settings.percent_stop_loss
    percent_target = settings.percent_take_profit
    if settings.risk_mode is RiskMode.PERCENTAGE:
        # Percent risk replaces ATR risk entirely in this mode.
        risk_per_share = fill_price * percent_stop / 100 if percent_stop is not None else 0.0
        if percent_stop is not None:
            stop_loss = fill_price * (1 - factor * percent_stop / 100)
        if percent_target is not None:
            take_profit = fill_price * (1 + factor * percent_target / 100)

    partial_target = None
    if risk_per_share > 0 and settings.partial_take_profit_at_r is not None:
        partial_target = fill_price + factor * risk_per_share * settings.partial_take_profit_at_r

    position = PositionState(
        side=side,
        entry_time=signal.time,
        entry_index=bar_index,
        entry_price=fill_price,
        size=shares,
        entry_commission_per_share=entry_commission / shares,
        stop_loss_price=stop_loss,
        take_profit_price=take_profit,
        risk_per_share=risk_per_share,
        extreme_price=fill_price,
        partial_target_price=partial_target,
    )
    return BuiltPosition(position=position, entry_commission=entry_commission)


def process_exits(
    bar: Bar,
    position: PositionState,
    settings: NormalizedSettings,
    slippage_rate: float,
    on_exit: ExitCallback,
) -> bool:
    """Apply stop, target, partial and time-stop rules in that order.

    ``on_exit`` performs the fill and shrinks ``position.size``. Returns True
    when the position was closed in full. A stop touched on the same bar as the
    target always wins.
    """
    is_short = position.side is PositionSide.SHORT
    exit_side = position.side.exit_signal

    stop = position.stop_loss_price
    if stop is not None and (bar.high >= stop if is_short else bar.low <= stop):
        on_exit(apply_slippage(stop, exit_side, slippage_rate), position.size, ExitReason.STOP_LOSS)
        return True

    target = position.take_profit_price
    if target is not None and (bar.low <= target if is_short else bar.high >= target):
        on_exit(apply_slippage(target, exit_side, slippage_rate), position.size, ExitReason.TAKE_PROFIT)
        return True

    partial = position.partial_target_price
    if not position.partial_taken and partial is not None and (bar.low <= partial if is_short else bar.high >= partial):
        partial_size = position.size * (settings.partial_take_profit_percent / 100)
        if partial_size > 0:
            on_exit(apply_slippage(partial, exit_side, slippage_rate), partial_size, ExitReason.PARTIAL)
            if position.size <= 0:
                return True
            position.partial_taken = True

    if settings.time_stop_bars is not None and position.bars_in_trade >= settings.time_stop_bars:
        is_losing = bar.close >= position.entry_price if is_short else bar.close <= position.entry_price
        if not position.partial_taken and is_losing:
            on_exit(apply_slippage(bar.close, exit_side, slippage_rate), position.size, ExitReason.TIME_STOP)
            return True

    return False


def update_position_state(
    bar: Bar,
    position: PositionState,
    settings: NormalizedSettings,
    atr: float | None,
) -> None:
    """Break-even and ATR trailing adjustments, then the favourable-extreme update."""
    is_short = position.side is PositionSide.SHORT
    factor = position.side.factor

    if atr is not None:
        if (
            settings.break_even_at_r is not None
            and position.risk_per_share > 0
            and not position.break_even_applied
        ):
            trigger = position.entry_price + factor * position.risk_per_share * settings.break_even_at_r
            if bar.low <= trigger if is_short else bar.high >= trigger:
                stop = position.stop_loss_price
                if stop is None:
                    position.stop_loss_price = position.entry_price
                elif is_short:
                    position.stop_loss_price = min(stop, position.entry_price)
                else:
                    position.stop_loss_price = max(stop, position.entry_price)
                position.break_even_applied = True

        if settings.trailing_atr is not None:
            trail = position.extreme_price - factor * atr * settings.trailing_atr
            stop = position.stop_loss_price
            # Trailing stops only ever tighten.
            if stop is None or (trail < stop if is_short else trail > stop):
                position.stop_loss_price = trail

    if is_short:
        position.extreme_price = min(position.extreme_price, bar.low)
    else:
        position.extreme_price = max(position.extreme_price, bar.high)


class Book:
    """Cash plus at most one open position.

    The position can only change through ``open`` and ``exit``; opening while a
    position is held is a programming error.
    """

    def __init__(self, initial_cash: float):
        self.initial_cash = initial_cash
        self.cash = initial_cash
        self._position: PositionState | None = None

    @property
    def position(self) -> PositionState | None:
        return self._position

    @property
    def is_flat(self) -> bool:
        return self._position is None

    def open(self, built: BuiltPosition) -> PositionState:
        if self._position is not None:
            raise RuntimeError("Book already holds an open position")
        self._position = built.position
        self.cash -= built.entry_commission
        return built.position

    def exit(self, exit_price: float, exit_size: float, commission_rate: float) -> ExitDetails:
        position = self._position
        if position is None:
            raise RuntimeError("Book has no open position to exit")
        details = exit_details(position, exit_price, exit_size, commission_rate)
        self.cash += details.raw_pnl - details.commission
        position.size -= details.size
        if position.size <= 0:
            self._position = None
        return details

    def equity(self, price: float) -> float:
        if self._position is None:
            return self.cash
        return self.cash + self._position.unrealized_pnl(price)
