"""
PostgreSQL-specific strategy implementation.

Connections go through psycopg 3 and run in auto-commit mode. Rows come back
as dictionaries from ``psycopg.rows.dict_row`` with the driver's own types
(``numeric`` as Decimal, ``uuid`` as UUID, ``jsonb`` as JSON text). The
column catalog is read from ``information_schema.columns`` in the current
search path.
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from datacore.cache import cacheable_strategy
from datacore.strategy.base import DatabaseStrategy, register_strategy
from datacore.types import ColumnKind, postgres_column_types
from psycopg.rows import dict_row
from psycopg.types.string import TextLoader

if TYPE_CHECKING:
    from datacore.connection import ConnectionWrapper
    from datacore.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {'application_name': options.appname}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
        )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        return {}

    def register_type_adapters(self, connection: Any) -> None:
        """Register dialect-specific type adapters for PostgreSQL.

        psycopg adapts every storage value natively, and JSON text binds as
        an untyped literal that the server casts to ``jsonb``. JSON columns
        are read back as text so a JSON string is not mistaken for plain
        text by the materializer.
        """
        connection.adapters.register_loader('json', TextLoader)
        connection.adapters.register_loader('jsonb', TextLoader)

    def create_dict_cursor(self, raw_conn: Any) -> Any:
        """Create a cursor that returns rows as dictionaries.
        """
        return raw_conn.cursor(row_factory=dict_row)

    def get_column_types(self) -> dict[ColumnKind, str]:
        """Return mapping of column kinds to PostgreSQL types."""
        return postgres_column_types

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    @cacheable_strategy('table_columns', ttl=300, maxsize=50)
    def get_columns(self, cn: 'ConnectionWrapper', table: str,
                    bypass_cache: bool = False) -> list[str]:
        """Get all columns for a table.
        """
        sql = """
select column_name
from information_schema.columns
where table_name = %s
and table_schema = any(current_schemas(false))
order by ordinal_position
"""
        return self._select_column_raw(cn, sql, (table,))

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for PostgreSQL.
        """
        raw_conn = conn
        if hasattr(conn, 'driver_connection'):
            raw_conn = conn.driver_connection
        self.enable_autocommit(raw_conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for PostgreSQL.
        """
        raw_conn.autocommit = True
