"""
Catalog metadata caching.

Column lookups against the live catalog are cached per strategy method with a
cachetools TTLCache. Keys are ``(table, args, kwargs)`` tuples so a table's
entries can be dropped exactly after DDL touches it. Schema synchronization
always bypasses the cache.
"""
import functools
import logging
import threading

import cachetools

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


class Cache:
    """Process-wide registry of named TTL caches.
    """

    _instance = None
    _caches: dict[str, cachetools.TTLCache] = {}
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_cache(self, name: str, maxsize: int = 100, ttl: int = 300) -> cachetools.TTLCache:
        """Named cache, created on first use with the given size and TTL.
        """
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cache = self._caches[name] = cachetools.TTLCache(maxsize=maxsize, ttl=ttl)
            return cache

    def clear_all(self) -> None:
        with self._lock:
            for cache in self._caches.values():
                cache.clear()

    def clear_for_table(self, table_name: str) -> int:
        """Drop every cached entry keyed on ``table_name``.

        Returns
            Number of entries dropped
        """
        table = table_name.lower()
        dropped = 0
        with self._lock:
            for name, cache in self._caches.items():
                stale = [key for key in list(cache.keys()) if _key_table(key) == table]
                for key in stale:
                    cache.pop(key, None)
                dropped += len(stale)
                if stale:
                    logger.debug(f'Dropped {len(stale)} {name} entries for {table_name}')
        return dropped


def _key_table(key: object) -> str | None:
    if isinstance(key, tuple) and key:
        return key[0]
    return None


def _is_connection(value: object) -> bool:
    return hasattr(value, 'cursor') or hasattr(value, 'driver_connection')


def _create_cache_key(table_name: str, method_args: tuple, method_kwargs: dict) -> CacheKey:
    """Deterministic key for one lookup; connection arguments are ignored.
    """
    args = ','.join(repr(arg) for arg in method_args if not _is_connection(arg))
    kwargs = ','.join(f'{k}={v!r}' for k, v in sorted(method_kwargs.items())
                      if not _is_connection(v))
    return table_name.lower(), args, kwargs


def cacheable_strategy(cache_name: str, ttl: int = 300, maxsize: int = 50):
    """Cache a strategy method with the signature ``(self, cn, table, ...)``.

    ``bypass_cache=True`` reads through to the database and leaves the cache
    untouched.
    """
    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, cn, table, *args, bypass_cache=False, **kwargs):
            if bypass_cache:
                return method(self, cn, table, *args, **kwargs)

            name = f'{cache_name}_{type(self).__name__}_{method.__name__}'
            cache = Cache.get_instance().get_cache(name, ttl=ttl, maxsize=maxsize)
            key = _create_cache_key(table, args, kwargs)

            try:
                return cache[key]
            except KeyError:
                pass

            result = method(self, cn, table, *args, **kwargs)
            cache[key] = result
            logger.debug(f'Cached {method.__name__}({table})')
            return result

        return wrapper
    return decorator
