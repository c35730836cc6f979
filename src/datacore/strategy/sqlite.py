"""
SQLite-specific strategy implementation.

This module implements the DatabaseStrategy interface with SQLite-specific operations.
It handles SQLite's features and limitations such as:
- ``?`` positional placeholders
- Declared-type converters for dates, times, timestamps and booleans
- ``INTEGER PRIMARY KEY`` as the auto-increment column
- A single shared connection for ``:memory:`` databases
- Metadata retrieval using ``pragma_table_info``
"""
import datetime
import decimal
import functools
import logging
import sqlite3
import uuid
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from datacore.cache import cacheable_strategy
from datacore.strategy.base import DatabaseStrategy, register_strategy
from datacore.types import ColumnKind, from_storage_value, sqlite_column_types
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from datacore.connection import ConnectionWrapper
    from datacore.options import DatabaseOptions

logger = logging.getLogger(__name__)

# Declared type (first word, case-insensitive) -> Python type read back
_CONVERTERS = {
    'date': datetime.date,
    'time': datetime.time,
    'timestamp': datetime.datetime,
    'datetime': datetime.datetime,
    'boolean': bool,
}


def _adapt_datetime(val: datetime.datetime) -> str:
    return val.isoformat(sep=' ')


def _convert(target: type, val: bytes) -> Any:
    return from_storage_value(val, target)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        An in-memory database exists only inside its connection, so every
        checkout must return that same connection.
        """
        kwargs: dict[str, Any] = {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                'check_same_thread': False,
            }
        }
        if options.database == ':memory:':
            kwargs['poolclass'] = StaticPool
        return kwargs

    def register_type_adapters(self, connection: Any) -> None:
        """Register dialect-specific type adapters and converters for SQLite.

        Adapters (Python -> SQLite) store decimals, UUIDs and calendar values
        as text; converters (SQLite -> Python) read them back by declared type.
        """
        sqlite3.register_adapter(decimal.Decimal, str)
        sqlite3.register_adapter(uuid.UUID, str)
        sqlite3.register_adapter(datetime.date, datetime.date.isoformat)
        sqlite3.register_adapter(datetime.time, datetime.time.isoformat)
        sqlite3.register_adapter(datetime.datetime, _adapt_datetime)

        for decltype, target in _CONVERTERS.items():
            sqlite3.register_converter(decltype, functools.partial(_convert, target))

    def create_dict_cursor(self, raw_conn: Any) -> Any:
        """Create a cursor that returns rows as sqlite3.Row.
        """
        raw_conn.row_factory = sqlite3.Row
        return raw_conn.cursor()

    def get_column_types(self) -> dict[ColumnKind, str]:
        """Return mapping of column kinds to SQLite types."""
        return sqlite_column_types

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    @cacheable_strategy('table_columns', ttl=300, maxsize=50)
    def get_columns(self, cn: 'ConnectionWrapper', table: str,
                    bypass_cache: bool = False) -> list[str]:
        """Get all columns for a table.
        """
        sql = 'select name from pragma_table_info(?) order by cid'
        return self._select_column_raw(cn, sql, (table,))

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        sqlite_conn = getattr(conn, 'driver_connection', conn)
        sqlite_conn.execute('PRAGMA foreign_keys = ON')
        self.enable_autocommit(sqlite_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def get_placeholder_style(self) -> str:
        """Return SQLite's placeholder marker.
        """
        return '?'

    def supports_returning(self) -> bool:
        """RETURNING arrived in SQLite 3.35."""
        return sqlite3.sqlite_version_info >= (3, 35, 0)
