"""
Application context.

``DataCore`` ties one connection provider, one descriptor registry and one
repository registry together. A host creates it at startup, registers its
repositories, and closes it at shutdown:

    with DataCore(options) as db:
        players = db.register(PlayerRepository)
        players.insert(Player(name='Ada'))
"""
import logging
from collections.abc import Callable
from typing import Any, Self, TypeVar

import sqlalchemy as sa
from datacore.connection import ConnectionProvider
from datacore.entity import DescriptorRegistry, EntityDescriptor
from datacore.options import DatabaseOptions
from datacore.repository import RepositoryRegistry
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

__all__ = ['DataCore']

R = TypeVar('R')


class DataCore:
    """Owns the connection provider and the registries for one database.
    """

    def __init__(self, options: DatabaseOptions,
                 engine_factory: Callable[..., Engine] = sa.create_engine) -> None:
        self.options = options
        self.provider = ConnectionProvider(options, engine_factory=engine_factory)
        self.descriptors = DescriptorRegistry(options.drivername)
        self.repositories = RepositoryRegistry(self.provider, self.descriptors, options)
        self._closed = False

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def dialect(self) -> str:
        return self.provider.dialect

    def describe(self, entity_type: type) -> EntityDescriptor | None:
        return self.descriptors.get(entity_type)

    def register(self, repo_type: type[R], entity_type: type | None = None) -> R:
        """Register a repository type and return its live instance."""
        return self.repositories.register(repo_type, entity_type)

    def get(self, repo_type: type[R]) -> R:
        return self.repositories.get(repo_type)

    def find(self, repo_type: type[R]) -> R | None:
        return self.repositories.find(repo_type)

    def close(self) -> None:
        """Dispose the connection pool. Safe to call more than once.
        """
        if self._closed:
            return
        self.provider.close()
        self._closed = True
        logger.debug(f'Closed {self.dialect} context')
