"""The per-book bar loop shared by the full, compact and combined engines."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from .models import BarSeries, EquityPoint, ExitReason, PreparedSignal, Trade
from .positions import (
    Book,
    ExitDetails,
    PositionState,
    apply_slippage,
    build_position,
    process_exits,
    update_position_state,
)
from .precompute import IndicatorSeries, value_at
from .settings import NormalizedSettings, RunParameters, TradeDirection
from .stats import DrawdownTracker, TradeStatsAccumulator

logger = logging.getLogger(__name__)


class Recorder(Protocol):
    def record_exit(
        self,
        position: PositionState,
        exit_time: Any,
        exit_price: float,
        details: ExitDetails,
        reason: ExitReason,
    ) -> None:
        ...

    def record_equity(self, time: Any, value: float) -> None:
        ...


class LedgerRecorder:
    """Keeps every trade and one equity point per bar."""

    def __init__(self) -> None:
        self.trades: list[Trade] = []
        self.equity_curve: list[EquityPoint] = []

    def record_exit(
        self,
        position: PositionState,
        exit_time: Any,
        exit_price: float,
        details: ExitDetails,
        reason: ExitReason,
    ) -> None:
        # Only a forced close keeps the protective levels, so callers can see what was still armed.
        keep_levels = reason is ExitReason.END_OF_DATA
        self.trades.append(
            Trade(
                id=len(self.trades) + 1,
                type=position.side,
                entry_time=position.entry_time,
                entry_price=position.entry_price,
                exit_time=exit_time,
                exit_price=exit_price,
                pnl=details.total_pnl,
                pnl_percent=details.pnl_percent,
                size=details.size,
                fees=details.fees,
                exit_reason=reason,
                stop_loss_price=position.stop_loss_price if keep_levels else None,
                take_profit_price=position.take_profit_price if keep_levels else None,
            )
        )

    def record_equity(self, time: Any, value: float) -> None:
        self.equity_curve.append(EquityPoint(time=time, value=value))


class RunningRecorder:
    """Keeps running sums and moments only; optionally the raw equity values for a later merge."""

    def __init__(self, initial_capital: float, keep_equity: bool = False) -> None:
        self.stats = TradeStatsAccumulator()
        self.drawdown = DrawdownTracker(initial_capital)
        self.keep_equity = keep_equity
        self.equity_values: list[float] = []

    def record_exit(
        self,
        position: PositionState,
        exit_time: Any,
        exit_price: float,
        details: ExitDetails,
        reason: ExitReason,
    ) -> None:
        self.stats.add(details.total_pnl, details.pnl_percent)

    def record_equity(self, time: Any, value: float) -> None:
        self.drawdown.update(value)
        if self.keep_equity:
            self.equity_values.append(value)


@dataclass
class BookRun:
    initial_capital: float
    final_capital: float
    recorder: Any = field(repr=False, default=None)

    @property
    def net_profit(self) -> float:
        return self.final_capital - self.initial_capital


def _close(
    book: Book,
    recorder: Recorder,
    exit_time: Any,
    exit_price: float,
    exit_size: float,
    reason: ExitReason,
    commission_rate: float,
) -> None:
    position = book.position
    if position is None:
        return
    details = book.exit(exit_price, exit_size, commission_rate)
    recorder.record_exit(position, exit_time, exit_price, details, reason)


def simulate_book(
    bars: BarSeries,
    prepared: Sequence[PreparedSignal],
    settings: NormalizedSettings,
    params: RunParameters,
    series: IndicatorSeries,
    recorder: Recorder,
    direction: TradeDirection | None = None,
) -> BookRun:
    """Replay ``bars`` for one book, feeding fills and equity into ``recorder``.

    Per bar: exits of the open position (stop, target, partial, time stop),
    then trailing and break-even updates, then the prepared signals that
    execute on this bar, then the equity mark at the close.
    """
    direction = direction or settings.trade_direction
    book = Book(params.initial_capital)
    commission_rate = params.commission_rate
    slippage_rate = settings.slippage_rate
    atr_series = series.atr
    cursor = 0
    rejected = 0

    def open_from(signal: PreparedSignal, index: int) -> None:
        nonlocal rejected
        built = build_position(signal, index, book.cash, params, settings, atr_series, direction)
        if built is None:
            rejected += 1
            return
        book.open(built)

    for index in range(bars.rows):
        time = bars.times[index]

        position = book.position
        if position is not None:
            bar = bars.bar(index)
            position.bars_in_trade += 1
            process_exits(
                bar,
                position,
                settings,
                slippage_rate,
                lambda price, size, reason: _close(book, recorder, time, price, size, reason, commission_rate),
            )
            if book.position is not None:
                update_position_state(bar, position, settings, value_at(atr_series, index))

        while cursor < len(prepared) and prepared[cursor].bar_index <= index:
            signal = prepared[cursor]
            cursor += 1
            if signal.bar_index != index:
                continue

            position = book.position
            if position is None:
                open_from(signal, index)
                continue

            if signal.type is not position.side.exit_signal:
                continue
            if not settings.allow_same_bar_exit and position.entry_index == index:
                continue

            exit_price = apply_slippage(signal.price, position.side.exit_signal, slippage_rate)
            _close(book, recorder, time, exit_price, position.size, ExitReason.SIGNAL, commission_rate)
            if direction is TradeDirection.BOTH:
                open_from(signal, index)

        recorder.record_equity(time, book.equity(float(bars.close[index])))

    if book.position is not None and bars.rows > 0:
        last = bars.rows - 1
        _close(
            book,
            recorder,
            bars.times[last],
            float(bars.close[last]),
            book.position.size,
            ExitReason.END_OF_DATA,
            commission_rate,
        )

    if rejected:
        logger.debug("Skipped %s entries that could not be sized or lacked ATR", rejected)
    return BookRun(initial_capital=params.initial_capital, final_capital=book.cash, recorder=recorder)
