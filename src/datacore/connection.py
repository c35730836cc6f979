"""
Database connection handling with SQLAlchemy.

This module provides:
1. `ConnectionProvider` - owns one SQLAlchemy engine (and its pool) and hands
   out one connection per repository call
2. `ConnectionWrapper` - wraps a pooled connection, executes one statement at a
   time and tracks call counts and timing
3. `check_connection` - retry decorator with backoff for transient errors
4. `create_engine_for_options` - engine construction from DatabaseOptions

The engine never opens connections on its own: every connection comes from
`ConnectionProvider.acquire()` and goes back to the pool when the ``with``
block exits, on success and on error alike.
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Self, TypeVar

import sqlalchemy as sa
from datacore.exceptions import ConnectionFailure, DbConnectionError
from datacore.options import DatabaseOptions
from datacore.strategy import get_strategy
from datacore.utils import ensure_commit, get_dialect_name
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'ConnectionProvider',
    'ConnectionWrapper',
    'StatementResult',
    'check_connection',
    'create_engine_for_options',
    'dispose_all_engines',
    'dispose_engine',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Engines owned by open providers, disposed at interpreter exit
_live_engines: set[Engine] = set()
_live_engines_lock = threading.RLock()

# SQLAlchemy wraps driver errors raised while opening a connection
_CHECKOUT_ERRORS = (*DbConnectionError, sa.exc.OperationalError, sa.exc.InterfaceError)


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_if: Callable[[BaseException], bool] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] | None = None) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the wrapped call when it raises one of ``retry_errors`` (default:
    the driver connection errors) and ``retry_if`` accepts the error. The
    delay grows by ``retry_backoff`` after every attempt; the last error is
    re-raised once ``max_retries`` attempts have failed.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else DbConnectionError

            tries = 0
            delay = retry_delay
            while True:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    tries += 1
                    if retry_if is not None and not retry_if(err):
                        raise
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Transient error (attempt {tries}/{max_retries}): {err}')
                    (sleep_func or time.sleep)(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def create_engine_for_options(options: DatabaseOptions,
                              engine_factory: Callable[..., Engine] = sa.create_engine,
                              **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for the given options.

    Without ``use_pool`` every checkout opens a fresh connection (NullPool);
    with it a QueuePool of ``pool_max_connections`` is kept. A dialect may
    pin its own pool class (SQLite in-memory databases use StaticPool).
    """
    strategy = get_strategy(options.drivername)
    url = strategy.build_connection_url(options)

    engine_kwargs: dict[str, Any] = {'echo': False}
    dialect_kwargs = strategy.get_engine_kwargs(options)

    if 'poolclass' not in dialect_kwargs:
        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

    engine_kwargs.update(dialect_kwargs)
    engine_kwargs.update(kwargs)

    engine = engine_factory(url, **engine_kwargs)
    with _live_engines_lock:
        _live_engines.add(engine)
    logger.debug(f'Created new engine for {options.drivername}')
    return engine


def dispose_engine(engine: Engine) -> None:
    """Dispose one engine and forget it.
    """
    with _live_engines_lock:
        _live_engines.discard(engine)
    engine.dispose()


def dispose_all_engines() -> None:
    """Dispose every engine still owned by an open provider.
    """
    with _live_engines_lock:
        for engine in list(_live_engines):
            engine.dispose()
        _live_engines.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


@dataclass(slots=True)
class StatementResult:
    """Outcome of executing one statement."""
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    columns: list[str] = field(default_factory=list)

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)


class ConnectionWrapper:
    """Wraps a pooled SQLAlchemy connection to execute statements and track timing

    This class provides a thin wrapper around SQLAlchemy connection objects that:
    1. Executes one statement at a time through a dictionary cursor
    2. Tracks query execution counts and timing
    3. Returns the connection to the pool on close or context exit
    4. Provides access to the underlying DBAPI connection via driver_connection
    """

    def __init__(self, sa_connection: sa.engine.Connection,
                 options: DatabaseOptions | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.dbapi_connection = sa_connection.connection
        self.driver_connection = sa_connection.connection.driver_connection
        self._dialect = get_dialect_name(sa_connection)
        self.strategy = get_strategy(self._dialect)
        self.calls = 0
        self.time = 0

    def __enter__(self) -> Self:
        """Support for context manager protocol
        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Return the connection to the pool when exiting the context manager
        """
        self.close()

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self._dialect

    @property
    def closed(self) -> bool:
        return self.sa_connection.closed

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def execute(self, sql: str, params: tuple | list = ()) -> StatementResult:
        """Execute one statement with positional parameters.

        Rows are fetched when the statement produces a result set, whatever
        its verb (SELECT, WITH, INSERT ... RETURNING).
        """
        start = time.time()
        cursor = self.strategy.create_dict_cursor(self.driver_connection)
        try:
            cursor.execute(sql, tuple(params))
            if cursor.description is not None:
                columns = [desc[0] for desc in cursor.description]
                rows = [dict(row) for row in cursor.fetchall()]
            else:
                columns, rows = [], []
            result = StatementResult(rows=rows, rowcount=cursor.rowcount, columns=columns)
        finally:
            cursor.close()
            self.addcall(time.time() - start)

        logger.debug(f'Executed statement with {len(params)} parameters: '
                     f'{len(result.rows)} rows, rowcount {result.rowcount}')
        return result

    def close(self) -> None:
        """Return the connection to the pool, committing first if needed
        """
        if self.sa_connection.closed:
            return
        ensure_commit(self.sa_connection)
        self.sa_connection.close()
        logger.debug(f'Connection released: {self.calls} queries in {self.time:.3f}s')


class ConnectionProvider:
    """Supplies pooled connections to the engine.

    Owns one SQLAlchemy engine. ``acquire()`` checks out a configured
    connection and releases it when the ``with`` block exits; ``close()``
    disposes the pool.
    """

    def __init__(self, options: DatabaseOptions,
                 engine_factory: Callable[..., Engine] = sa.create_engine,
                 **engine_kwargs: Any) -> None:
        self.options = options
        self.strategy = get_strategy(options.drivername)
        self.engine = create_engine_for_options(options, engine_factory=engine_factory,
                                                **engine_kwargs)
        self._checkout = check_connection(self._connect, max_retries=options.acquire_retries,
                                          retry_errors=_CHECKOUT_ERRORS)

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    def _connect(self) -> ConnectionWrapper:
        sa_connection = self.engine.connect()
        try:
            self.strategy.configure_connection(sa_connection.connection)
            self.strategy.register_type_adapters(sa_connection.connection.driver_connection)
        except Exception:
            sa_connection.close()
            raise
        return ConnectionWrapper(sa_connection, self.options)

    @contextmanager
    def acquire(self) -> Iterator[ConnectionWrapper]:
        """Check out one connection for the duration of the block.

        Raises
            ConnectionFailure: No connection could be established
        """
        try:
            cn = self._checkout()
        except DbConnectionError as exc:
            raise ConnectionFailure(f'Could not acquire a {self.dialect} connection: {exc}') from exc
        except sa.exc.DBAPIError as exc:
            raise ConnectionFailure(f'Could not acquire a {self.dialect} connection: {exc}') from exc
        try:
            yield cn
        finally:
            cn.close()

    def close(self) -> None:
        """Dispose the engine and every pooled connection.
        """
        dispose_engine(self.engine)
        logger.debug(f'Disposed {self.dialect} engine')
