"""
Minimal object-relational mapping for PostgreSQL and SQLite.

Entities are dataclasses declared with ``@entity`` and ``column()``;
repositories are ``Repository[E]`` subclasses whose methods carry
named-parameter SQL through ``@query``. Registering a repository
synchronizes its table (additively) and returns a live instance.
"""
__version__ = '0.1.0'

from dataclasses import fields
from typing import Any

from datacore.connection import ConnectionProvider, ConnectionWrapper
from datacore.context import DataCore
from datacore.entity import ColumnDescriptor, DescriptorRegistry
from datacore.entity import EntityDescriptor, column, describe, entity
from datacore.exceptions import ConnectionFailure, DatabaseError
from datacore.exceptions import DeclarationError, ExecutionError
from datacore.exceptions import NotRegisteredError, QueryError, SchemaSyncError
from datacore.exceptions import SerializationError, TypeConversionError
from datacore.materialize import ReturnShape
from datacore.options import DatabaseOptions
from datacore.query import QueryTemplate, query
from datacore.repository import Repository, RepositoryRegistry
from datacore.schema import SchemaSynchronizer
from datacore.types import BigInt, Char, GenerationType, Json, Real, SmallInt
from datacore.types import TinyInt

from libb import load_options


@load_options(cls=DatabaseOptions)
def connect(options: DatabaseOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> DataCore:
    """Create a DataCore context for a database

    Args:
        options: Can be:
                - DatabaseOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        DataCore context; close it (or use it as a context manager) to dispose the pool
    """
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)
    return DataCore(options)
