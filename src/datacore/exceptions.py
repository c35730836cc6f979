"""
Exception classes for the mapping engine and driver error groups.
"""
import re
import sqlite3

import psycopg

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'eof detected',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    # Database unavailable
    r'database.*unavailable',
    r'too many connections',
    r'connection pool',
    # Concurrent DDL against the same relation
    r'already exists',
    r'tuple concurrently updated',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for dropped connections, timeouts, an unavailable server and
    the duplicate-relation race two processes hit when they synchronize the
    same table at once. Syntax errors, type mismatches and permission errors
    return False.

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    error_msg = str(exc).lower()
    return bool(_RETRYABLE_REGEX.search(error_msg))


class DatabaseError(Exception):
    """Base class for all datacore errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining a database connection.
    """


class DeclarationError(DatabaseError):
    """An entity or repository declaration is unusable.

    Raised at the registration or call site: a repository method without a
    query template, a signature whose parameters cannot be bound by name, more
    than one primary key on an entity, or a key-based operation on an entity
    without a primary key.
    """


class SchemaSyncError(DatabaseError):
    """DDL execution failed while synchronizing an entity's table.
    """

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f'Schema synchronization failed for {table!r}: {message}')
        self.table = table


class ExecutionError(DatabaseError):
    """Statement parse, bind or execute failure at call time.
    """


QueryError = ExecutionError


class TypeConversionError(DatabaseError):
    """Error converting types between Python and the database.
    """


class SerializationError(TypeConversionError):
    """A structured value could not be converted to or from JSON.
    """


class NotRegisteredError(DatabaseError):
    """No repository implementation is registered for the requested type.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    ConnectionFailure,
    )

DriverError = (
    psycopg.Error,
    sqlite3.Error,
    )
