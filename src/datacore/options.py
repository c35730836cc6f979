from dataclasses import dataclass

from datacore.strategy import get_available_dialects, get_strategy_class

from libb import ConfigOptions, scriptname

__all__ = ['DatabaseOptions']


@dataclass
class DatabaseOptions(ConfigOptions):
    """Options

    supported driver names: `postgresql`, `sqlite`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Registration options:
    - sync_schema: Synchronize each entity's table on first registration (default: True)
    - sync_retries: Attempts for a synchronization that hits a transient error (default: 3)
    - acquire_retries: Attempts to check out a connection before giving up (default: 3)
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    # Registration parameters
    sync_schema: bool = True
    sync_retries: int = 3
    acquire_retries: int = 3

    def __post_init__(self):
        if self.drivername not in get_available_dialects():
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.appname = self.appname or scriptname() or 'python_console'
        get_strategy_class(self.drivername).validate_options(self)
        if self.sync_retries < 1 or self.acquire_retries < 1:
            raise ValueError('sync_retries and acquire_retries must be at least 1')
