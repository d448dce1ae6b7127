"""JSON run configuration for the command line entry point."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .settings import BacktestSettings, TradeSizing


def _optional_path(value: Any) -> Path | None:
    text = str(value or "").strip()
    return Path(text) if text else None


def _number(payload: dict[str, Any], key: str, default: float) -> float:
    raw = payload.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc
    if not math.isfinite(value):
        raise ValueError(f"{key} must be finite")
    return value


@dataclass
class RunConfig:
    bars_csv: Path
    signals_csv: Path | None = None
    strategy: str | None = None
    strategy_params: dict[str, Any] = field(default_factory=dict)
    initial_capital: float = 10_000.0
    position_size_percent: float = 100.0
    commission_percent: float = 0.0
    sizing: TradeSizing = field(default_factory=TradeSizing)
    settings: BacktestSettings = field(default_factory=BacktestSettings)
    compact: bool = False
    _config_dir: Path | None = None

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        *,
        config_dir: Path | None = None,
    ) -> "RunConfig":
        if not isinstance(payload, dict):
            raise ValueError("Run config must be a JSON object")

        bars_csv = _optional_path(payload.get("bars_csv"))
        if bars_csv is None:
            raise ValueError("bars_csv is required")

        signals_csv = _optional_path(payload.get("signals_csv"))
        strategy = str(payload.get("strategy") or "").strip() or None
        if signals_csv is None and strategy is None:
            raise ValueError("Run config requires signals_csv or strategy")
        if signals_csv is not None and strategy is not None:
            raise ValueError("Use either signals_csv or strategy, not both")

        strategy_params = payload.get("strategy_params") or {}
        if not isinstance(strategy_params, dict):
            raise ValueError("strategy_params must be a JSON object")
        settings = payload.get("settings") or {}
        if not isinstance(settings, dict):
            raise ValueError("settings must be a JSON object")
        sizing = payload.get("sizing")
        if sizing is not None and not isinstance(sizing, dict):
            raise ValueError("sizing must be a JSON object")

        initial_capital = _number(payload, "initial_capital", 10_000.0)
        if initial_capital <= 0:
            raise ValueError("initial_capital must be greater than 0")
        position_size_percent = _number(payload, "position_size_percent", 100.0)
        if position_size_percent <= 0:
            raise ValueError("position_size_percent must be greater than 0")
        commission_percent = _number(payload, "commission_percent", 0.0)
        if commission_percent < 0:
            raise ValueError("commission_percent must not be negative")

        return cls(
            bars_csv=bars_csv,
            signals_csv=signals_csv,
            strategy=strategy,
            strategy_params=dict(strategy_params),
            initial_capital=initial_capital,
            position_size_percent=position_size_percent,
            commission_percent=commission_percent,
            sizing=TradeSizing.from_raw(sizing),
            settings=BacktestSettings.from_dict(settings),
            compact=bool(payload.get("compact", False)),
            _config_dir=config_dir,
        )

    @classmethod
    def from_path(cls, path: str | Path) -> "RunConfig":
        config_path = Path(path)
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc
        config = cls.from_dict(payload, config_dir=config_path.parent)
        if not config.bars_csv.is_absolute():
            config.bars_csv = (config_path.parent / config.bars_csv).resolve()
        if config.signals_csv is not None and not config.signals_csv.is_absolute():
            config.signals_csv = (config_path.parent / config.signals_csv).resolve()
        return config

    @property
    def base_dir(self) -> Path:
        return self._config_dir or Path.cwd()

    def to_dict(self) -> dict[str, Any]:
        return {
            "bars_csv": str(self.bars_csv),
            "signals_csv": str(self.signals_csv) if self.signals_csv is not None else None,
            "strategy": self.strategy,
            "strategy_params": dict(self.strategy_params),
            "initial_capital": self.initial_capital,
            "position_size_percent": self.position_size_percent,
            "commission_percent": self.commission_percent,
            "sizing": self.sizing.to_dict(),
            "settings": self.settings.to_dict(),
            "compact": self.compact,
        }
