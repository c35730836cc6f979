"""
Result materialization.

Turns the rows of one executed statement into what the repository method
declares it returns. The declared return annotation picks a shape:

    list[E]            -> every row as an E
    E | None, E        -> the first row as an E, or None
    int                -> affected-row count (first column when rows come back)
    None               -> nothing
    pd.DataFrame       -> the rows as a DataFrame, unconverted
    other scalar       -> first column of the first row

Entity fields are filled from the column of the same name (exact match first,
then case-insensitive). Fields with no matching column keep their dataclass
default, or None.
"""
import dataclasses
import enum
import functools
import inspect
import logging
import types
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Union, get_args, get_origin, get_type_hints

import pandas as pd
from datacore.entity import field_column_name
from datacore.types import from_storage_value, unwrap_optional

logger = logging.getLogger(__name__)

__all__ = [
    'ReturnShape',
    'resolve_shape',
    'resolve_row_type',
    'materialize_row',
    'materialize',
    'load_dataframe',
]

_LIST_ORIGINS = (list, Sequence)


class ReturnShape(enum.Enum):
    LIST = 'list'
    OPTIONAL = 'optional'
    ENTITY = 'entity'
    ROWCOUNT = 'rowcount'
    VOID = 'void'
    SCALAR = 'scalar'
    DATAFRAME = 'dataframe'


def _is_missing(annotation: Any) -> bool:
    return annotation is Any or annotation is inspect.Signature.empty


def _constant(value: Any) -> Callable[[], Any]:
    return lambda: value


def _is_row_class(value_type: Any) -> bool:
    return isinstance(value_type, type) and dataclasses.is_dataclass(value_type)


def resolve_shape(annotation: Any, entity_type: type | None = None) -> ReturnShape:
    """Shape of the result for a return annotation.

    A missing annotation means a single entity.
    """
    if annotation is None or annotation is type(None):
        return ReturnShape.VOID
    if _is_missing(annotation):
        return ReturnShape.ENTITY

    origin = get_origin(annotation)
    if annotation in _LIST_ORIGINS or origin in _LIST_ORIGINS:
        return ReturnShape.LIST

    if origin in {Union, types.UnionType}:
        inner = unwrap_optional(annotation)
        if inner is annotation:
            return ReturnShape.SCALAR
        return ReturnShape.OPTIONAL if _is_row_class(inner) else ReturnShape.SCALAR

    if isinstance(annotation, type) and issubclass(annotation, pd.DataFrame):
        return ReturnShape.DATAFRAME
    if annotation is int:
        return ReturnShape.ROWCOUNT
    if annotation is entity_type or _is_row_class(annotation):
        return ReturnShape.ENTITY
    return ReturnShape.SCALAR


def resolve_row_type(annotation: Any, entity_type: type | None = None) -> Any:
    """Type each returned row (or scalar) converts to.

    ``list[E]`` gives ``E``; bare ``list`` and a missing annotation give the
    repository's entity type.
    """
    if annotation is None or annotation is type(None) or _is_missing(annotation):
        return entity_type

    origin = get_origin(annotation)
    if annotation in _LIST_ORIGINS:
        return entity_type
    if origin in _LIST_ORIGINS:
        args = get_args(annotation)
        return args[0] if args else entity_type
    return unwrap_optional(annotation)


@functools.lru_cache(maxsize=256)
def _field_plan(row_type: type) -> tuple[tuple[str, str, Any, Callable[[], Any]], ...]:
    """(field name, column name, declared type, zero value factory) per field.
    """
    hints = get_type_hints(row_type)
    plan = []
    for f in dataclasses.fields(row_type):
        if f.default is not dataclasses.MISSING:
            zero = _constant(f.default)
        elif f.default_factory is not dataclasses.MISSING:
            zero = f.default_factory
        else:
            zero = type(None)
        plan.append((f.name, field_column_name(f), hints.get(f.name, Any), zero))
    return tuple(plan)


def materialize_row(row: Mapping[str, Any], row_type: type) -> Any:
    """Build one instance of ``row_type`` from a column-name mapping.

    The instance is created without calling ``__init__`` so required fields
    and frozen dataclasses are both filled the same way.
    """
    instance = row_type.__new__(row_type)
    folded = {str(key).lower(): key for key in row}

    for field_name, column_name, value_type, zero in _field_plan(row_type):
        key = column_name if column_name in row else folded.get(column_name.lower())
        if key is None:
            value = zero()
        else:
            value = from_storage_value(row[key], value_type)
        object.__setattr__(instance, field_name, value)

    return instance


def load_dataframe(rows: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    """Rows as a DataFrame; an empty result keeps its column names.
    """
    if not rows:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame.from_records(list(rows), columns=list(columns))


def _first_value(rows: Sequence[Mapping[str, Any]], target: Any) -> Any:
    if not rows:
        return None
    first = rows[0]
    if len(rows) > 1:
        logger.debug(f'{len(rows)} rows returned for a single-value result, using the first')
    return from_storage_value(next(iter(first.values()), None), target)


def _convert(row: Mapping[str, Any], row_type: Any) -> Any:
    if _is_row_class(row_type):
        return materialize_row(row, row_type)
    return from_storage_value(next(iter(row.values()), None), row_type)


def materialize(rows: Sequence[Mapping[str, Any]], row_type: Any, shape: ReturnShape,
                rowcount: int = -1, columns: Sequence[str] = ()) -> Any:
    """Shape a statement's rows into the declared return value.

    Args:
        rows: Result rows as column-name mappings, empty for statements without results
        row_type: Entity (or scalar) type each row converts to
        shape: Declared return shape
        rowcount: Rows affected, for statements that return none
        columns: Result column names, kept on an empty DataFrame
    """
    match shape:
        case ReturnShape.VOID:
            return None
        case ReturnShape.LIST:
            return [_convert(row, row_type) for row in rows]
        case ReturnShape.DATAFRAME:
            return load_dataframe(rows, columns or (list(rows[0]) if rows else []))
        case ReturnShape.ROWCOUNT:
            if rows:
                return _first_value(rows, int)
            return rowcount
        case ReturnShape.SCALAR:
            return _first_value(rows, row_type)
        case ReturnShape.ENTITY | ReturnShape.OPTIONAL:
            if not rows:
                return None
            if len(rows) > 1:
                logger.debug(f'{len(rows)} rows returned for a single-result method, using the first')
            return _convert(rows[0], row_type)
    raise ValueError(f'Unknown return shape: {shape}')
