"""Run many independent simulations over shared, read-only indicator data."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Hashable, Mapping, Sequence

from .engine import SignalsLike, run_backtest, run_backtest_compact
from .models import BacktestResult
from .precompute import BarsLike, IndicatorCache, IndicatorSeries, SettingsLike
from .settings import TradeSizing

logger = logging.getLogger(__name__)


@dataclass
class BacktestJob:
    bars: BarsLike
    signals: SignalsLike
    initial_capital: float = 10_000.0
    position_size_percent: float = 100.0
    commission_percent: float = 0.0
    settings: SettingsLike = None
    sizing: TradeSizing | Mapping[str, Any] | None = None
    precomputed: IndicatorSeries | None = None
    compact: bool = True
    dataset_key: Hashable | None = None


def _run_job(job: BacktestJob, cache: IndicatorCache | None) -> BacktestResult:
    precomputed = job.precomputed
    if precomputed is None and cache is not None:
        precomputed = cache.get_or_compute(job.bars, job.settings, dataset_key=job.dataset_key)
    runner = run_backtest_compact if job.compact else run_backtest
    return runner(
        job.bars,
        job.signals,
        job.initial_capital,
        job.position_size_percent,
        job.commission_percent,
        job.settings,
        job.sizing,
        precomputed,
    )


def run_many(
    jobs: Sequence[BacktestJob],
    max_workers: int = 4,
    cache: IndicatorCache | None = None,
) -> list[BacktestResult]:
    """Run ``jobs`` on a thread pool and return their results in input order."""
    if not jobs:
        return []

    workers = max(1, min(int(max_workers), len(jobs)))
    results: list[BacktestResult | None] = [None] * len(jobs)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        future_map = {pool.submit(_run_job, job, cache): index for index, job in enumerate(jobs)}
        for future in as_completed(future_map):
            results[future_map[future]] = future.result()

    if cache is not None:
        logger.debug("Indicator cache: %s hits, %s misses", cache.hits, cache.misses)
    return [result for result in results if result is not None]
