"""
Base strategy interface for dialect-specific operations.

Each concrete strategy supplies what differs between databases: the
connection URL and engine arguments, autocommit and cursor setup, driver type
adapters, the live column catalog, the positional placeholder, and the SQL
spelling of every column kind. Everything above this layer is written once
against this interface.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datacore.connection import ConnectionWrapper
    from datacore.options import DatabaseOptions
    from datacore.types import ColumnKind

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for database-specific operations.
    """

    @contextmanager
    def _cursor(self, cn: 'ConnectionWrapper', sql: str, params: tuple | None = None):
        """Context manager for cursor lifecycle.

        Handles cursor creation, SQL execution, and cleanup.
        """
        cursor = cn.dbapi_connection.cursor()
        try:
            cursor.execute(sql, params or ())
            yield cursor
        finally:
            cursor.close()

    def _select_column_raw(self, cn: 'ConnectionWrapper', sql: str,
                           params: tuple | None = None) -> list:
        """Execute SQL and return first column as list.

        Used internally by strategy methods for catalog queries.
        """
        with self._cursor(cn, sql, params) as cursor:
            return [row[0] for row in cursor.fetchall()]

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> Any:
        """Build the SQLAlchemy connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            sqlalchemy URL object
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            Dictionary of keyword arguments for create_engine
        """

    @abstractmethod
    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings.

        Args:
            conn: Pooled DBAPI connection to configure
        """

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection.

        Every repository call runs exactly one statement, so connections
        handed out by the provider always run in auto-commit mode.

        Args:
            raw_conn: The raw DBAPI connection (not wrapped)
        """

    @abstractmethod
    def register_type_adapters(self, connection: Any) -> None:
        """Register dialect-specific type adapters.

        Args:
            connection: Database connection to register adapters on
        """

    @abstractmethod
    def create_dict_cursor(self, raw_conn: Any) -> Any:
        """Create a cursor that returns rows addressable by column name.

        Args:
            raw_conn: Raw DBAPI connection

        Returns
            Cursor whose rows convert with ``dict(row)``
        """

    @abstractmethod
    def get_columns(self, cn: 'ConnectionWrapper', table: str,
                    bypass_cache: bool = False) -> list[str]:
        """Get the names of the columns that exist for a table.

        Args:
            cn: Database connection object
            table: Table name as declared (unquoted)
            bypass_cache: If True, bypass cache and query database directly

        Returns
            list: Column names, empty when the table does not exist
        """

    @abstractmethod
    def get_column_types(self) -> dict['ColumnKind', str]:
        """Return mapping of column kinds to this dialect's SQL type text."""

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return option names that must be set for this dialect."""

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Args:
            options: DatabaseOptions to validate

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def get_placeholder_style(self) -> str:
        """Return the positional placeholder marker for this database.

        Returns
            str: '%s' for PostgreSQL-style, '?' for SQLite-style
        """
        return '%s'

    def supports_returning(self) -> bool:
        """Whether INSERT ... RETURNING is available."""
        return True
