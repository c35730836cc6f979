"""
Dialect strategy lookup.

Strategies register themselves by dialect name on import; one instance per
dialect is shared process-wide since strategies hold no connection state.
"""
from functools import lru_cache

from datacore.strategy.base import _STRATEGY_REGISTRY
from datacore.strategy.base import DatabaseStrategy as DatabaseStrategy
from datacore.strategy.base import register_strategy as register_strategy
from datacore.strategy.postgres import PostgresStrategy as PostgresStrategy
from datacore.strategy.sqlite import SQLiteStrategy as SQLiteStrategy


def get_strategy_class(dialect: str) -> type[DatabaseStrategy]:
    """Get the strategy class for a dialect without instantiating.

    Raises
        ValueError: If no strategy is registered for the dialect
    """
    try:
        return _STRATEGY_REGISTRY[dialect]
    except KeyError:
        available = get_available_dialects()
        raise ValueError(f'Unsupported dialect: {dialect}. Available: {available}') from None


@lru_cache(maxsize=8)
def get_strategy(dialect: str) -> DatabaseStrategy:
    """Get the shared strategy instance for a dialect name."""
    return get_strategy_class(dialect)()


def get_available_dialects() -> list[str]:
    """Return list of registered dialect names."""
    return list(_STRATEGY_REGISTRY.keys())
