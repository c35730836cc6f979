"""
Type mapping between Python values and SQL columns.

This module provides:
- Marker types for column widths Python does not distinguish (TinyInt, BigInt, Real, ...)
- column_kind: classify a declared Python type into a ColumnKind
- resolve_column_type: SQL column type text for a declared type and dialect
- to_storage_value / from_storage_value: value conversion at the driver boundary

Resolution priority (first match wins): generated UUID, Optional unwrap,
fixed-width scalars, calendar types, enums (stored by member name),
collections and JSON trees (one JSON column), and finally a generic text
column for anything unrecognized.
"""
import datetime
import decimal
import enum
import json
import logging
import math
import types
import uuid
from typing import Any, NewType, Union, get_args, get_origin

import dateutil.parser
import numpy as np
from datacore.exceptions import SerializationError, TypeConversionError

logger = logging.getLogger(__name__)

__all__ = [
    'GenerationType',
    'ColumnKind',
    'TinyInt',
    'SmallInt',
    'BigInt',
    'Real',
    'Char',
    'Json',
    'unwrap_optional',
    'column_kind',
    'resolve_column_type',
    'to_storage_value',
    'from_storage_value',
    'dump_json',
    'load_json',
    'postgres_column_types',
    'sqlite_column_types',
]

TinyInt = NewType('TinyInt', int)
SmallInt = NewType('SmallInt', int)
BigInt = NewType('BigInt', int)
Real = NewType('Real', float)
Char = NewType('Char', str)
Json = NewType('Json', object)


class GenerationType(enum.Enum):
    """Policy by which a column value is produced by the database."""
    NONE = 'NONE'
    AUTO = 'AUTO'
    UUID = 'UUID'


class ColumnKind(enum.Enum):
    """Semantic column category, independent of dialect spelling."""
    BOOLEAN = enum.auto()
    INT8 = enum.auto()
    INT16 = enum.auto()
    INT32 = enum.auto()
    INT64 = enum.auto()
    SERIAL32 = enum.auto()
    SERIAL64 = enum.auto()
    FLOAT32 = enum.auto()
    FLOAT64 = enum.auto()
    DECIMAL = enum.auto()
    CHAR = enum.auto()
    BINARY = enum.auto()
    UUID = enum.auto()
    UUID_GENERATED = enum.auto()
    TEXT = enum.auto()
    DATE = enum.auto()
    TIME = enum.auto()
    TIMESTAMP = enum.auto()
    ENUM = enum.auto()
    JSON = enum.auto()
    FALLBACK = enum.auto()


_SCALAR_KINDS: dict[Any, ColumnKind] = {
    bool: ColumnKind.BOOLEAN,
    TinyInt: ColumnKind.INT8,
    SmallInt: ColumnKind.INT16,
    int: ColumnKind.INT32,
    BigInt: ColumnKind.INT64,
    Real: ColumnKind.FLOAT32,
    float: ColumnKind.FLOAT64,
    decimal.Decimal: ColumnKind.DECIMAL,
    Char: ColumnKind.CHAR,
    bytes: ColumnKind.BINARY,
    bytearray: ColumnKind.BINARY,
    uuid.UUID: ColumnKind.UUID,
    str: ColumnKind.TEXT,
}

_SERIAL_KINDS = {
    ColumnKind.INT32: ColumnKind.SERIAL32,
    ColumnKind.INT64: ColumnKind.SERIAL64,
}

# datetime is a subclass of date, so lookups are by identity
_CALENDAR_KINDS: dict[Any, ColumnKind] = {
    datetime.date: ColumnKind.DATE,
    datetime.time: ColumnKind.TIME,
    datetime.datetime: ColumnKind.TIMESTAMP,
}

_JSON_CONTAINERS = (list, tuple, set, frozenset, dict)

postgres_column_types: dict[ColumnKind, str] = {
    ColumnKind.BOOLEAN: 'BOOLEAN',
    ColumnKind.INT8: 'SMALLINT',
    ColumnKind.INT16: 'SMALLINT',
    ColumnKind.INT32: 'INT',
    ColumnKind.INT64: 'BIGINT',
    ColumnKind.SERIAL32: 'SERIAL',
    ColumnKind.SERIAL64: 'BIGSERIAL',
    ColumnKind.FLOAT32: 'REAL',
    ColumnKind.FLOAT64: 'DOUBLE PRECISION',
    ColumnKind.DECIMAL: 'NUMERIC(18,4)',
    ColumnKind.CHAR: 'CHAR(1)',
    ColumnKind.BINARY: 'BYTEA',
    ColumnKind.UUID: 'UUID',
    ColumnKind.UUID_GENERATED: 'UUID DEFAULT gen_random_uuid()',
    ColumnKind.TEXT: 'TEXT',
    ColumnKind.DATE: 'DATE',
    ColumnKind.TIME: 'TIME',
    ColumnKind.TIMESTAMP: 'TIMESTAMP',
    ColumnKind.ENUM: 'TEXT',
    ColumnKind.JSON: 'JSONB',
    ColumnKind.FALLBACK: 'TEXT',
}

_SQLITE_RANDOM_UUID = (
    "(lower(hex(randomblob(4))) || '-' || lower(hex(randomblob(2))) || '-4' || "
    "substr(lower(hex(randomblob(2))), 2) || '-' || "
    "substr('89ab', abs(random()) % 4 + 1, 1) || substr(lower(hex(randomblob(2))), 2) || '-' || "
    'lower(hex(randomblob(6))))'
)

# INTEGER PRIMARY KEY is the rowid alias, which is SQLite's auto-increment
sqlite_column_types: dict[ColumnKind, str] = {
    ColumnKind.BOOLEAN: 'BOOLEAN',
    ColumnKind.INT8: 'SMALLINT',
    ColumnKind.INT16: 'SMALLINT',
    ColumnKind.INT32: 'INTEGER',
    ColumnKind.INT64: 'BIGINT',
    ColumnKind.SERIAL32: 'INTEGER',
    ColumnKind.SERIAL64: 'INTEGER',
    ColumnKind.FLOAT32: 'REAL',
    ColumnKind.FLOAT64: 'DOUBLE PRECISION',
    ColumnKind.DECIMAL: 'NUMERIC(18,4)',
    ColumnKind.CHAR: 'CHAR(1)',
    ColumnKind.BINARY: 'BLOB',
    ColumnKind.UUID: 'TEXT',
    ColumnKind.UUID_GENERATED: f'TEXT DEFAULT {_SQLITE_RANDOM_UUID}',
    ColumnKind.TEXT: 'TEXT',
    ColumnKind.DATE: 'DATE',
    ColumnKind.TIME: 'TIME',
    ColumnKind.TIMESTAMP: 'TIMESTAMP',
    ColumnKind.ENUM: 'TEXT',
    ColumnKind.JSON: 'TEXT',
    ColumnKind.FALLBACK: 'TEXT',
}


def unwrap_optional(value_type: Any) -> Any:
    """Return ``T`` for ``Optional[T]`` / ``T | None``, else the type unchanged.
    """
    if get_origin(value_type) in {Union, types.UnionType}:
        args = [a for a in get_args(value_type) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return value_type


def _is_json_type(value_type: Any) -> bool:
    if value_type is Json:
        return True
    origin = get_origin(value_type) or value_type
    return isinstance(origin, type) and issubclass(origin, _JSON_CONTAINERS)


def column_kind(value_type: Any, generated: bool = False,
                strategy: GenerationType = GenerationType.NONE) -> ColumnKind:
    """Classify a declared Python type.
    """
    if generated and strategy is GenerationType.UUID:
        return ColumnKind.UUID_GENERATED

    inner = unwrap_optional(value_type)
    if inner is not value_type:
        return column_kind(inner, generated, strategy)

    kind = _SCALAR_KINDS.get(value_type)
    if kind is not None:
        if generated and strategy is not GenerationType.NONE:
            kind = _SERIAL_KINDS.get(kind, kind)
        return kind

    kind = _CALENDAR_KINDS.get(value_type)
    if kind is not None:
        return kind

    if isinstance(value_type, type) and issubclass(value_type, enum.Enum):
        return ColumnKind.ENUM

    if _is_json_type(value_type):
        return ColumnKind.JSON

    return ColumnKind.FALLBACK


def resolve_column_type(value_type: Any, generated: bool = False,
                        strategy: GenerationType = GenerationType.NONE,
                        dialect: str = 'postgresql') -> str:
    """Resolve the SQL column type declaration for a Python type.

    Args:
        value_type: Declared field type (may be Optional, generic, a marker type)
        generated: Whether the database generates the value
        strategy: Generation strategy when ``generated`` is set
        dialect: Target dialect name

    Returns
        SQL type text, e.g. ``BIGINT`` or ``UUID DEFAULT gen_random_uuid()``
    """
    from datacore.strategy import get_strategy
    kind = column_kind(value_type, generated, strategy)
    return get_strategy(dialect).get_column_types()[kind]


def _json_default(obj: Any) -> Any:
    """Encode the non-JSON values that have an unambiguous text form."""
    if isinstance(obj, set | frozenset):
        return list(obj)
    if isinstance(obj, enum.Enum):
        return obj.name
    if isinstance(obj, uuid.UUID | decimal.Decimal):
        return str(obj)
    if isinstance(obj, datetime.date | datetime.time):
        return obj.isoformat()
    raise TypeError(f'Object of type {type(obj).__name__} is not JSON serializable')


def dump_json(value: Any) -> str:
    """Serialize a structured value to JSON text.
    """
    try:
        return json.dumps(value, default=_json_default)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f'Cannot serialize {type(value).__name__} to JSON: {exc}') from exc


def load_json(raw: Any, target_type: Any = Json) -> Any:
    """Decode a JSON column value and shape it to ``target_type``.

    Accepts JSON text (or bytes) and values the driver already decoded.
    """
    if isinstance(raw, bytes | bytearray | memoryview):
        raw = bytes(raw).decode()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise SerializationError(f'Invalid JSON for {target_type}: {exc}') from exc
    return _coerce_json(raw, target_type)


def _coerce_json(value: Any, target_type: Any) -> Any:
    target_type = unwrap_optional(target_type)
    if value is None or target_type in {Json, Any, object}:
        return value

    origin = get_origin(target_type) or target_type
    args = get_args(target_type)

    if not (isinstance(origin, type) and issubclass(origin, _JSON_CONTAINERS)):
        return from_storage_value(value, target_type)

    if issubclass(origin, dict):
        if not isinstance(value, dict):
            raise SerializationError(f'Expected a JSON object for {target_type}, got {type(value).__name__}')
        if len(args) == 2:
            return {_coerce_json(k, args[0]): _coerce_json(v, args[1]) for k, v in value.items()}
        return dict(value)

    if not isinstance(value, list):
        raise SerializationError(f'Expected a JSON array for {target_type}, got {type(value).__name__}')

    if issubclass(origin, tuple) and args and not (len(args) == 2 and args[1] is Ellipsis):
        items = [_coerce_json(v, t) for v, t in zip(value, args)]
    else:
        items = [_coerce_json(v, args[0]) for v in value] if args else list(value)

    if issubclass(origin, frozenset):
        return frozenset(items)
    if issubclass(origin, set):
        return set(items)
    if issubclass(origin, tuple):
        return tuple(items)
    return items


def _convert_numpy_value(val: np.generic) -> Any:
    """Convert NumPy scalar to the equivalent Python value."""
    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return val.astype('datetime64[us]').item()
    py_value = val.item()
    if isinstance(py_value, float) and math.isnan(py_value):
        return None
    return py_value


_PASSTHROUGH = (
    bool, int, float, decimal.Decimal, str, bytes, uuid.UUID,
    datetime.date, datetime.time, datetime.datetime,
    )


def to_storage_value(value: Any, value_type: Any = None) -> Any:
    """Convert a Python value to the form bound to a statement parameter.

    Enums bind their member name, collections and dicts bind JSON text,
    recognized scalars pass through for the driver adapters, anything else
    binds its string form. When ``value_type`` declares a JSON column every
    non-null value binds JSON text, scalars included.
    """
    if value is None:
        return None

    if isinstance(value, np.generic):
        value = _convert_numpy_value(value)
        if value is None:
            return None

    if value_type is not None and column_kind(value_type) is ColumnKind.JSON:
        return dump_json(value)

    if isinstance(value, enum.Enum):
        return value.name

    if isinstance(value, _JSON_CONTAINERS):
        return dump_json(value)

    if isinstance(value, bytearray | memoryview):
        return bytes(value)

    if isinstance(value, _PASSTHROUGH):
        return value

    logger.debug(f'No storage mapping for {type(value).__name__}, binding its string form')
    return str(value)


def _read_bool(raw: Any) -> bool:
    raw = _as_text(raw)
    if isinstance(raw, str):
        return raw.strip().lower() in {'1', 't', 'true', 'y', 'yes', 'on'}
    return bool(raw)


def _read_char(raw: Any) -> str | None:
    text = str(raw)
    return text[0] if text else None


def _read_decimal(raw: Any) -> decimal.Decimal:
    if isinstance(raw, decimal.Decimal):
        return raw
    return decimal.Decimal(str(raw))


def _read_uuid(raw: Any) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    if isinstance(raw, bytes | bytearray | memoryview) and len(raw) == 16:
        return uuid.UUID(bytes=bytes(raw))
    return uuid.UUID(str(raw))


def _read_text(raw: Any) -> str:
    if isinstance(raw, bytes | bytearray | memoryview):
        return bytes(raw).decode()
    return raw if isinstance(raw, str) else str(raw)


def _as_text(raw: Any) -> Any:
    if isinstance(raw, bytes | bytearray | memoryview):
        return bytes(raw).decode()
    return raw


def _read_date(raw: Any) -> datetime.date:
    raw = _as_text(raw)
    if isinstance(raw, datetime.datetime):
        return raw.date()
    if isinstance(raw, datetime.date):
        return raw
    return dateutil.parser.isoparse(raw).date()


def _read_time(raw: Any) -> datetime.time:
    raw = _as_text(raw)
    if isinstance(raw, datetime.time):
        return raw
    if isinstance(raw, datetime.datetime):
        return raw.time()
    return dateutil.parser.isoparser().parse_isotime(raw)


def _read_datetime(raw: Any) -> datetime.datetime:
    raw = _as_text(raw)
    if isinstance(raw, datetime.datetime):
        return raw
    if isinstance(raw, datetime.date):
        return datetime.datetime.combine(raw, datetime.time())
    return dateutil.parser.isoparse(raw)


_READERS = {
    ColumnKind.BOOLEAN: _read_bool,
    ColumnKind.INT8: int,
    ColumnKind.INT16: int,
    ColumnKind.INT32: int,
    ColumnKind.INT64: int,
    ColumnKind.SERIAL32: int,
    ColumnKind.SERIAL64: int,
    ColumnKind.FLOAT32: float,
    ColumnKind.FLOAT64: float,
    ColumnKind.DECIMAL: _read_decimal,
    ColumnKind.CHAR: _read_char,
    ColumnKind.BINARY: bytes,
    ColumnKind.UUID: _read_uuid,
    ColumnKind.UUID_GENERATED: _read_uuid,
    ColumnKind.TEXT: _read_text,
    ColumnKind.DATE: _read_date,
    ColumnKind.TIME: _read_time,
    ColumnKind.TIMESTAMP: _read_datetime,
}


def from_storage_value(raw: Any, target_type: Any) -> Any:
    """Convert a raw column value to ``target_type``.

    Inverse of ``to_storage_value`` for scalars, calendar values, enums and
    JSON containers. Unrecognized target types get the raw value back.

    Raises
        SerializationError: JSON text that does not decode to the target shape
        TypeConversionError: A scalar that cannot be read as the target type
    """
    if raw is None:
        return None

    target = unwrap_optional(target_type)
    if target is Any or target is None:
        return raw

    kind = column_kind(target)

    if kind is ColumnKind.JSON:
        return load_json(raw, target)

    if kind is ColumnKind.ENUM:
        if isinstance(raw, target):
            return raw
        try:
            return target[_read_text(raw)]
        except KeyError as exc:
            raise TypeConversionError(f'{raw!r} is not a member of {target.__name__}') from exc

    reader = _READERS.get(kind)
    if reader is None:
        return raw

    try:
        return reader(raw)
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise TypeConversionError(f'Cannot read {raw!r} as {getattr(target, "__name__", target)}') from exc
