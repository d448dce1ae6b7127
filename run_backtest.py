"""CLI for running trade simulations and inspecting prepared signal queues."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

_HERE = Path(__file__).parent
if str(_HERE) not in sys.path:
    sys.path.insert(0, str(_HERE))

from core.logging_setup import setup_logging  # noqa: E402
from tradesim import (  # noqa: E402
    BacktestResult,
    RunConfig,
    Signal,
    StrategyRegistry,
    load_bars_csv,
    load_signals_csv,
    prepare_signals_for_scanner,
    run_backtest,
    run_backtest_compact,
)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bar-replay trade simulator CLI")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a simulation from a JSON config")
    run_parser.add_argument("--config", required=True, help="Path to the run JSON config")
    run_parser.add_argument(
        "--compact",
        action="store_true",
        help="Statistics only, without trade ledger or equity curve",
    )

    prepare_parser = subparsers.add_parser("prepare", help="Show the executable signal queue")
    prepare_parser.add_argument("--bars", required=True, help="Bars CSV path")
    prepare_parser.add_argument("--signals", required=True, help="Signals CSV path")
    prepare_parser.add_argument("--settings", help="Settings as inline JSON or a path to a JSON file")

    return parser.parse_args(argv)


def _load_settings_arg(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    candidate = Path(raw)
    text = candidate.read_text(encoding="utf-8") if candidate.suffix == ".json" and candidate.exists() else raw
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid settings JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Settings must be a JSON object")
    return payload


def _load_signals(config: RunConfig, bars: list) -> list[Signal]:
    if config.signals_csv is not None:
        return load_signals_csv(config.signals_csv)
    registry = StrategyRegistry()
    registry.load("configured", config.strategy, base_dir=config.base_dir)
    return registry.generate("configured", bars, config.strategy_params)


def _log_summary(logger: logging.Logger, result: BacktestResult) -> None:
    logger.info("Net profit: %.2f (%.2f%%)", result.net_profit, result.net_profit_percent)
    logger.info(
        "Trades: %s (won %s, lost %s, win rate %.2f%%)",
        result.total_trades,
        result.winning_trades,
        result.losing_trades,
        result.win_rate,
    )
    logger.info("Profit factor: %s", result.profit_factor)
    logger.info("Max drawdown: %.2f (%.2f%%)", result.max_drawdown, result.max_drawdown_percent)
    logger.info("Sharpe ratio: %.4f", result.sharpe_ratio)


def _run_simulation(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("config does not exist: %s", config_path)
        return 2

    try:
        config = RunConfig.from_path(config_path)
        if not config.bars_csv.exists():
            logger.error("bars_csv does not exist: %s", config.bars_csv)
            return 2
        if config.signals_csv is not None and not config.signals_csv.exists():
            logger.error("signals_csv does not exist: %s", config.signals_csv)
            return 2
        bars = load_bars_csv(config.bars_csv)
        signals = _load_signals(config, bars)
        runner = run_backtest_compact if (args.compact or config.compact) else run_backtest
        result = runner(
            bars,
            signals,
            config.initial_capital,
            config.position_size_percent,
            config.commission_percent,
            config.settings,
            config.sizing,
        )
    except (ValueError, ImportError, FileNotFoundError, TypeError) as exc:
        logger.error(str(exc))
        return 3

    logger.info("Bars: %s, signals: %s", len(bars), len(signals))
    _log_summary(logger, result)
    for trade in result.trades:
        logger.debug("Trade %s", trade.to_dict())
    return 0


def _run_prepare(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    for label, raw_path in (("bars", args.bars), ("signals", args.signals)):
        if not Path(raw_path).exists():
            logger.error("%s file does not exist: %s", label, raw_path)
            return 2

    try:
        settings = _load_settings_arg(args.settings)
        bars = load_bars_csv(args.bars)
        signals = load_signals_csv(args.signals)
        prepared = prepare_signals_for_scanner(bars, signals, settings)
    except (ValueError, OSError) as exc:
        logger.error(str(exc))
        return 3

    logger.info("Prepared %s of %s signals", len(prepared), len(signals))
    for item in prepared:
        logger.info(
            "bar=%s time=%s type=%s price=%.6f",
            item.bar_index,
            item.time,
            item.type.value,
            item.price,
        )
    return 0


def _run(args: argparse.Namespace) -> int:
    if args.command == "run":
        return _run_simulation(args)
    if args.command == "prepare":
        return _run_prepare(args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(log_level=args.log_level)
    raise SystemExit(_run(args))


if __name__ == "__main__":
    main()
