"""Strategy registry for stable strategy selection."""

from __future__ import annotations

import importlib
import inspect
import pkgutil
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path
from types import ModuleType

from tradeloop.config import Settings
from tradeloop.errors import ConfigError
from tradeloop.strategy_core.base import Strategy

StrategyFactory = Callable[[Settings], Strategy]
_SKIPPED_MODULES = {"__init__", "base", "registry"}
DEFAULT_STRATEGY_ID = "sma_crossover"
_STRATEGIES_PACKAGE_NAME = "tradeloop.strategies"


def _strategies_directory() -> Path:
    strategies_package = importlib.import_module(_STRATEGIES_PACKAGE_NAME)
    package_paths = list(getattr(strategies_package, "__path__", []))
    if not package_paths:
        raise ConfigError(f"Unable to resolve strategies package path: {_STRATEGIES_PACKAGE_NAME}")
    return Path(package_paths[0])


def _iter_strategy_module_names() -> list[str]:
    names: list[str] = []
    for module in pkgutil.iter_modules([str(_strategies_directory())]):
        name = module.name
        if name.startswith("_") or name in _SKIPPED_MODULES:
            continue
        names.append(name)
    return sorted(names)


def normalize_strategy_id(value: str) -> str:
    return value.strip().lower().replace("-", "_")


def _resolved_strategy_id(module_name: str, candidate: type[Strategy]) -> str | None:
    raw = getattr(candidate, "strategy_id", None)
    if isinstance(raw, str):
        normalized = normalize_strategy_id(raw)
        if normalized:
            return normalized
    return normalize_strategy_id(module_name) or None


def _default_params_for(module: ModuleType, strategy_id: str) -> object | None:
    canonical_name = f"default_{normalize_strategy_id(strategy_id)}_params"
    candidate = getattr(module, canonical_name, None)
    if callable(candidate):
        return candidate()

    fallbacks: list[Callable[[], object]] = []
    for name, function in inspect.getmembers(module, inspect.isfunction):
        if function.__module__ != module.__name__:
            continue
        if name.startswith("default_") and name.endswith("_params"):
            fallbacks.append(function)
    if len(fallbacks) == 1:
        return fallbacks[0]()
    return None


def _build_strategy(
    strategy_type: type[Strategy],
    module: ModuleType,
    settings: Settings,
    strategy_id: str,
) -> Strategy:
    signature = inspect.signature(strategy_type)
    kwargs: dict[str, object] = {}

    for parameter in signature.parameters.values():
        if parameter.kind in {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}:
            continue
        if parameter.name == "settings":
            kwargs["settings"] = settings
            continue
        if parameter.name == "params":
            if parameter.default is not inspect.Signature.empty:
                continue
            params_object = _default_params_for(module, strategy_id)
            if params_object is None:
                raise ConfigError(
                    f"Strategy '{strategy_id}' requires params but no "
                    "default_*_params() function was found."
                )
            kwargs["params"] = params_object
            continue
        if parameter.default is inspect.Signature.empty:
            raise ConfigError(
                f"Strategy '{strategy_id}' has unsupported required "
                f"constructor parameter '{parameter.name}'."
            )

    return strategy_type(**kwargs)


def _strategy_types_in_module(module: ModuleType) -> list[tuple[type[Strategy], str]]:
    discovered: list[tuple[type[Strategy], str]] = []
    module_name = module.__name__.rsplit(".", 1)[-1]
    for _, candidate in inspect.getmembers(module, inspect.isclass):
        if candidate is Strategy or not issubclass(candidate, Strategy):
            continue
        if candidate.__module__ != module.__name__ or inspect.isabstract(candidate):
            continue
        strategy_id = _resolved_strategy_id(module_name, candidate)
        if strategy_id is None:
            continue
        discovered.append((candidate, strategy_id))
    return discovered


@lru_cache(maxsize=1)
def _discover_registry() -> tuple[dict[str, StrategyFactory], dict[str, str]]:
    registry: dict[str, StrategyFactory] = {}
    load_errors: dict[str, str] = {}

    for module_name in _iter_strategy_module_names():
        import_path = f"{_STRATEGIES_PACKAGE_NAME}.{module_name}"
        try:
            module = importlib.import_module(import_path)
        except Exception as exc:  # pragma: no cover
            load_errors[module_name] = f"{type(exc).__name__}: {exc}"
            continue

        for strategy_type, strategy_id in _strategy_types_in_module(module):
            if strategy_id in registry:
                raise ConfigError(f"Duplicate strategy id discovered: '{strategy_id}'")

            def factory(
                settings: Settings,
                strategy_cls: type[Strategy] = strategy_type,
                strategy_module: ModuleType = module,
                resolved_id: str = strategy_id,
            ) -> Strategy:
                return _build_strategy(strategy_cls, strategy_module, settings, resolved_id)

            registry[strategy_id] = factory

    return registry, load_errors


def available_strategy_ids() -> list[str]:
    """Return supported strategy ids."""
    registry, _ = _discover_registry()
    return sorted(registry.keys())


def default_strategy_id() -> str:
    """Return the default strategy id resolved from the registry."""
    registry, _ = _discover_registry()
    if DEFAULT_STRATEGY_ID in registry:
        return DEFAULT_STRATEGY_ID
    ids = available_strategy_ids()
    if not ids:
        raise ConfigError("No strategies are registered")
    return ids[0]


def create_strategy(strategy_id: str, settings: Settings) -> Strategy:
    """Build strategy instance from stable id."""
    candidate = strategy_id.strip() or default_strategy_id()
    normalized = normalize_strategy_id(candidate)
    registry, load_errors = _discover_registry()
    factory = registry.get(normalized)
    if factory is None:
        supported = ", ".join(available_strategy_ids())
        load_error = load_errors.get(normalized)
        if load_error is not None:
            raise ConfigError(f"Strategy '{strategy_id}' could not be loaded: {load_error}")
        raise ConfigError(f"Unknown strategy '{strategy_id}'. Supported: {supported}")
    return factory(settings)
