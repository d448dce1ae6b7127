"""Strategy plugin interface and an explicit, injectable registry."""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import logging
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol, Sequence, runtime_checkable

from .models import Bar, Signal

logger = logging.getLogger(__name__)


@runtime_checkable
class Strategy(Protocol):
    """Opaque signal producer: ``execute(bars, params)`` returns buy/sell signals."""

    def execute(self, bars: Sequence[Bar], params: Mapping[str, Any]) -> list[Signal]:
        ...


def _sanitize_module_name(path: Path) -> str:
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()
    return f"_tradesim_strategy_{digest}"


def load_strategy_class(spec: str, base_dir: Path | None = None) -> type:
    """Import ``package.module:Class`` or ``path/to/file.py:Class``."""
    raw_spec = str(spec or "").strip()
    if not raw_spec:
        raise ValueError("strategy class spec is required")

    if ":" in raw_spec:
        target, class_name = raw_spec.rsplit(":", 1)
    elif "." in raw_spec:
        target, class_name = raw_spec.rsplit(".", 1)
    else:
        raise ValueError(f"Invalid strategy spec (expected module:Class): {spec}")

    target = target.strip()
    class_name = class_name.strip()
    if not target or not class_name:
        raise ValueError(f"Invalid strategy spec: {spec}")

    is_file_ref = target.endswith(".py") or "\\" in target or "/" in target
    if is_file_ref:
        file_path = Path(target)
        if not file_path.is_absolute():
            file_path = ((base_dir or Path.cwd()) / file_path).resolve()
        if not file_path.exists():
            raise FileNotFoundError(f"Strategy module file not found: {file_path}")
        module_spec = importlib.util.spec_from_file_location(_sanitize_module_name(file_path), file_path)
        if module_spec is None or module_spec.loader is None:
            raise ImportError(f"Unable to import strategy module from {file_path}")
        module = importlib.util.module_from_spec(module_spec)
        module_spec.loader.exec_module(module)
    else:
        module = importlib.import_module(target)

    try:
        return getattr(module, class_name)
    except AttributeError as exc:
        raise ImportError(f"Strategy class {class_name} not found in {target}") from exc


class StrategyRegistry:
    """Strategies by key. Build one at startup and pass it to whatever needs strategies."""

    def __init__(self, strategies: Mapping[str, Strategy] | None = None):
        self._strategies: dict[str, Strategy] = {}
        for key, strategy in (strategies or {}).items():
            self.register(key, strategy)

    def register(self, key: str, strategy: Strategy, replace: bool = False) -> None:
        name = str(key or "").strip()
        if not name:
            raise ValueError("strategy key is required")
        if not isinstance(strategy, Strategy):
            raise TypeError(f"Strategy {name} must implement execute(bars, params)")
        if name in self._strategies and not replace:
            raise ValueError(f"Duplicate strategy key: {name}")
        self._strategies[name] = strategy
        logger.debug("Registered strategy %s (%s)", name, type(strategy).__name__)

    def load(self, key: str, spec: str, base_dir: Path | None = None, replace: bool = False) -> Strategy:
        """Import a strategy class, instantiate it without arguments and register it."""
        strategy_cls = load_strategy_class(spec, base_dir=base_dir)
        strategy = strategy_cls()
        self.register(key, strategy, replace=replace)
        return strategy

    def unregister(self, key: str) -> None:
        self._strategies.pop(key, None)

    def get(self, key: str) -> Strategy:
        try:
            return self._strategies[key]
        except KeyError as exc:
            raise KeyError(f"Unknown strategy: {key}") from exc

    def keys(self) -> list[str]:
        return sorted(self._strategies)

    def __contains__(self, key: object) -> bool:
        return key in self._strategies

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._strategies)

    def generate(self, key: str, bars: Sequence[Bar], params: Mapping[str, Any] | None = None) -> list[Signal]:
        """Run a registered strategy and normalise whatever it yields into ``Signal`` objects."""
        raw = self.get(key).execute(bars, dict(params or {}))
        return [Signal.from_raw(item) for item in (raw or [])]
