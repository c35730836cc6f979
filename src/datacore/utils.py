"""Connection helpers with no internal dependencies.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)

_DRIVER_MODULES = {'psycopg': 'postgresql', 'sqlite3': 'sqlite'}


def get_dialect_name(obj: Any) -> str:
    """Dialect name for a ConnectionWrapper, SQLAlchemy connection or engine,
    or a raw psycopg/sqlite3 connection.
    """
    dialect = getattr(obj, 'dialect', None)
    if isinstance(dialect, str):
        return dialect.lower()
    if dialect is not None:
        return dialect.name.lower()

    root_module = type(obj).__module__.partition('.')[0]
    try:
        return _DRIVER_MODULES[root_module]
    except KeyError:
        raise AttributeError(f'Cannot determine dialect for {type(obj).__name__}') from None


def ensure_commit(connection: Any) -> None:
    """Commit an open transaction before the connection returns to the pool.

    Connections in autocommit mode never have one open, so this is a no-op
    for them.
    """
    if connection.in_transaction():
        connection.commit()
        logger.debug('Committed pending transaction on release')
