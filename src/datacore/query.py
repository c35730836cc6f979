"""
Declarative query templates.

A repository method carries its SQL through the ``@query`` decorator:

    class PlayerRepository(Repository[Player]):

        @query('SELECT * FROM players WHERE name = :name')
        def find_by_name(self, name: str) -> list[Player]: ...

``parse`` turns the template into the driver statement and the ordered
parameter names; ``bind`` turns call arguments into the positional values for
those names.
"""
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from datacore.sql import compile_template
from datacore.types import to_storage_value

logger = logging.getLogger(__name__)

__all__ = ['QueryTemplate', 'parse', 'bind', 'query', 'get_query']


@dataclass(frozen=True, slots=True)
class QueryTemplate:
    """A parsed template.

    ``parameter_names`` keeps source order and repeats, so a template that
    names ``:id`` twice binds it twice.
    """
    raw: str
    statement: str
    parameter_names: tuple[str, ...]


@lru_cache(maxsize=512)
def parse(raw: str, placeholder: str = '%s') -> QueryTemplate:
    """Compile a named-parameter template for a driver placeholder style.

    Every string parses: text without ``:name`` tokens becomes a statement
    with no parameters.
    """
    statement, names = compile_template(raw, placeholder)
    return QueryTemplate(raw=raw, statement=statement, parameter_names=names)


def bind(parameter_names: Sequence[str], arguments: Mapping[str, Any],
         value_types: Mapping[str, Any] | None = None) -> tuple:
    """Positional storage values for the named parameters.

    A name with no matching argument binds NULL. ``value_types`` maps names to
    declared types, so a ``Json`` parameter binds JSON text for scalars too.
    """
    value_types = value_types or {}
    values = []
    for name in parameter_names:
        if name not in arguments:
            logger.debug(f'No argument named {name!r}, binding NULL')
        values.append(to_storage_value(arguments.get(name), value_types.get(name)))
    return tuple(values)


def query(sql: str):
    """Attach a SQL template to a repository method.
    """
    def decorator(func):
        func.__query__ = sql
        return func
    return decorator


def get_query(func: Any) -> str | None:
    """Template attached by ``@query``, or None."""
    return getattr(func, '__query__', None)
