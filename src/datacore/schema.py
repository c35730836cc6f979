"""
Additive schema synchronization.

Brings a table in line with an entity descriptor without ever removing
anything: a table that does not exist is created with every declared column,
a table that exists gets one ``ALTER TABLE ... ADD COLUMN`` per declared
column it lacks. Columns present in the database but absent from the entity
are left alone, and declared columns that already exist are never altered.

Running ``sync`` twice against an unchanged declaration issues no DDL the
second time.
"""
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from datacore.cache import Cache
from datacore.connection import check_connection
from datacore.exceptions import ConnectionFailure, DriverError, SchemaSyncError
from datacore.exceptions import is_retryable_error
from datacore.sql import quote_identifier

if TYPE_CHECKING:
    from datacore.connection import ConnectionProvider
    from datacore.entity import EntityDescriptor

logger = logging.getLogger(__name__)

__all__ = ['SchemaSynchronizer', 'plan_statements']


def plan_statements(descriptor: 'EntityDescriptor', existing_columns: Iterable[str]) -> list[str]:
    """DDL needed to add the descriptor's missing columns.

    Pure: looks only at the descriptor and the given column names.
    """
    existing = set(existing_columns)
    pending = [col.definition() for col in descriptor.columns if col.name not in existing]
    if not pending:
        return []

    table = quote_identifier(descriptor.table_name, descriptor.dialect)
    if not existing:
        return [f'CREATE TABLE IF NOT EXISTS {table} ({", ".join(pending)})']
    return [f'ALTER TABLE {table} ADD COLUMN {definition}' for definition in pending]


def _is_transient(exc: BaseException) -> bool:
    cause = exc.__cause__
    if cause is None or isinstance(cause, ConnectionFailure):
        return False
    return is_retryable_error(cause)


class SchemaSynchronizer:
    """Reconciles entity descriptors with the live schema.
    """

    def __init__(self, provider: 'ConnectionProvider', retries: int = 1) -> None:
        self.provider = provider
        self.retries = retries

    def plan(self, descriptor: 'EntityDescriptor', existing_columns: Iterable[str]) -> list[str]:
        return plan_statements(descriptor, existing_columns)

    def sync(self, descriptor: 'EntityDescriptor') -> list[str]:
        """Synchronize one entity's table and return the DDL issued.

        Raises
            SchemaSyncError: Catalog lookup or DDL failed
        """
        if not descriptor.columns:
            logger.debug(f'{descriptor.entity_type.__name__} declares no columns, nothing to sync')
            return []

        run = check_connection(self._sync_once, max_retries=self.retries,
                               retry_errors=SchemaSyncError, retry_if=_is_transient)
        return run(descriptor)

    def _sync_once(self, descriptor: 'EntityDescriptor') -> list[str]:
        table = descriptor.table_name
        issued = []
        try:
            with self.provider.acquire() as cn:
                existing = self.provider.strategy.get_columns(cn, table, bypass_cache=True)
                for statement in self.plan(descriptor, existing):
                    logger.debug(f'Synchronizing {table}: {statement}')
                    cn.execute(statement)
                    issued.append(statement)
        except (*DriverError, ConnectionFailure) as exc:
            raise SchemaSyncError(table, str(exc)) from exc
        finally:
            if issued:
                Cache.get_instance().clear_for_table(table)

        if issued:
            logger.info(f'Synchronized table {table}: {len(issued)} statement(s)')
        return issued
