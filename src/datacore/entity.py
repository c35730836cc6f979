"""
Entity declarations and descriptors.

An entity is a dataclass marked with ``@entity`` whose persisted fields are
declared with ``column()``:

    @entity(table='players')
    @dataclass
    class Player:
        id: int = column(id=True, generated=GenerationType.AUTO, default=None)
        name: str = column(nullable=False, default=None)
        tags: list[str] = column(default_factory=list)

``describe()`` turns such a class into an immutable ``EntityDescriptor``
without touching a connection. ``DescriptorRegistry`` caches descriptors per
(entity, dialect) and lets a host supply its own builder for a type.
"""
import dataclasses
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, get_type_hints

from datacore.exceptions import DeclarationError
from datacore.sql import quote_identifier
from datacore.types import GenerationType, resolve_column_type

logger = logging.getLogger(__name__)

__all__ = [
    'entity',
    'column',
    'ColumnDescriptor',
    'EntityDescriptor',
    'describe',
    'entity_table',
    'field_column_name',
    'DescriptorRegistry',
]

_COLUMN_KEY = 'datacore.column'


@dataclass(frozen=True, slots=True)
class _ColumnDeclaration:
    name: str | None
    id: bool
    nullable: bool
    unique: bool
    generated: GenerationType


def entity(cls=None, *, table: str | None = None):
    """Mark a dataclass as persisted to ``table`` (default: lower-cased class name).

    Supports both @entity and @entity(table=...) syntax. Plain classes are
    turned into dataclasses.
    """
    def decorator(klass):
        if not dataclasses.is_dataclass(klass):
            klass = dataclass(klass)
        klass.__entity__ = table or klass.__name__.lower()
        return klass

    if cls is None:
        return decorator
    return decorator(cls)


def column(name: str | None = None, *, id: bool = False, nullable: bool = True,
           unique: bool = False, generated: GenerationType | None = None,
           default: Any = dataclasses.MISSING,
           default_factory: Any = dataclasses.MISSING) -> Any:
    """Declare a persisted field.

    Args:
        name: Column name, defaults to the field name
        id: Whether this is the primary key column
        nullable: False adds ``NOT NULL``
        unique: True adds ``UNIQUE`` (ignored on the primary key)
        generated: How the database generates the value, if it does
        default: Field default, as for ``dataclasses.field``
        default_factory: Field default factory, as for ``dataclasses.field``
    """
    declaration = _ColumnDeclaration(
        name=name, id=id, nullable=nullable, unique=unique,
        generated=generated or GenerationType.NONE,
    )
    return dataclasses.field(default=default, default_factory=default_factory,
                             metadata={_COLUMN_KEY: declaration})


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """One persisted column of an entity."""
    name: str
    sql_type: str
    is_primary_key: bool
    is_nullable: bool
    is_unique: bool
    generation_strategy: GenerationType
    field_name: str
    value_type: Any
    dialect: str = 'postgresql'

    @property
    def is_generated(self) -> bool:
        return self.generation_strategy is not GenerationType.NONE

    def definition(self) -> str:
        """Column definition fragment for CREATE TABLE / ADD COLUMN.
        """
        parts = [quote_identifier(self.name, self.dialect), self.sql_type]
        if self.is_primary_key:
            parts.append('PRIMARY KEY')
        if not self.is_nullable:
            parts.append('NOT NULL')
        if self.is_unique and not self.is_primary_key:
            parts.append('UNIQUE')
        return ' '.join(parts)


@dataclass(frozen=True, slots=True)
class EntityDescriptor:
    """Table name and ordered columns of an entity."""
    table_name: str
    columns: tuple[ColumnDescriptor, ...]
    entity_type: type
    dialect: str = 'postgresql'

    @property
    def primary_key(self) -> ColumnDescriptor | None:
        for col in self.columns:
            if col.is_primary_key:
                return col
        return None

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def require_primary_key(self) -> ColumnDescriptor:
        """Return the key column or raise DeclarationError."""
        key = self.primary_key
        if key is None:
            raise DeclarationError(f'{self.entity_type.__name__} declares no primary key column')
        return key


def field_column_name(f: dataclasses.Field) -> str:
    """Column a dataclass field reads from: the declared name, else the field name."""
    declaration = f.metadata.get(_COLUMN_KEY)
    if declaration is not None and declaration.name:
        return declaration.name
    return f.name


def entity_table(entity_type: type) -> str | None:
    """Table name of an entity type, or None when it is not persisted."""
    return getattr(entity_type, '__entity__', None)


def describe(entity_type: type, dialect: str = 'postgresql') -> EntityDescriptor | None:
    """Build the descriptor for an entity type.

    Returns None for a type that is not marked with ``@entity``.

    Raises
        DeclarationError: More than one primary key, or a type that is not a dataclass
    """
    table = entity_table(entity_type)
    if table is None:
        return None
    if not dataclasses.is_dataclass(entity_type):
        raise DeclarationError(f'{entity_type.__name__} must be a dataclass')

    hints = get_type_hints(entity_type)
    columns = []
    for f in dataclasses.fields(entity_type):
        declaration = f.metadata.get(_COLUMN_KEY)
        if declaration is None:
            continue
        value_type = hints.get(f.name, Any)
        generated = declaration.generated is not GenerationType.NONE
        columns.append(ColumnDescriptor(
            name=declaration.name or f.name,
            sql_type=resolve_column_type(value_type, generated, declaration.generated, dialect),
            is_primary_key=declaration.id,
            is_nullable=declaration.nullable,
            is_unique=declaration.unique,
            generation_strategy=declaration.generated,
            field_name=f.name,
            value_type=value_type,
            dialect=dialect,
        ))

    keys = [col.name for col in columns if col.is_primary_key]
    if len(keys) > 1:
        raise DeclarationError(f'{entity_type.__name__} declares more than one primary key: {keys}')

    return EntityDescriptor(table_name=table, columns=tuple(columns),
                            entity_type=entity_type, dialect=dialect)


class DescriptorRegistry:
    """Descriptor builders and built descriptors for one context.

    ``describe`` is the builder for every type without a registered one.
    """

    def __init__(self, dialect: str = 'postgresql') -> None:
        self.dialect = dialect
        self._builders: dict[type, Callable[[type, str], EntityDescriptor | None]] = {}
        self._descriptors: dict[type, EntityDescriptor | None] = {}
        self._lock = threading.RLock()

    def register_builder(self, entity_type: type,
                         builder: Callable[[type, str], EntityDescriptor | None]) -> None:
        with self._lock:
            self._builders[entity_type] = builder
            self._descriptors.pop(entity_type, None)

    def get(self, entity_type: type) -> EntityDescriptor | None:
        with self._lock:
            if entity_type not in self._descriptors:
                builder = self._builders.get(entity_type, describe)
                self._descriptors[entity_type] = builder(entity_type, self.dialect)
                logger.debug(f'Described {entity_type.__name__} for {self.dialect}')
            return self._descriptors[entity_type]

    def __contains__(self, entity_type: type) -> bool:
        return entity_type in self._descriptors
