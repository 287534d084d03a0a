"""
Type handling for commands and result mapping.

This module provides:
- DbType, ParameterDirection, CommandType: the provider-neutral enumerations
- infer_db_type: DbType inference from a Python value
- TypeConverter: Convert NumPy/Pandas values to driver-compatible values
- change_type: generic value conversion used by parameters and mappers
"""
import datetime
import logging
import math
import types
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Union, get_args, get_origin

import dateutil.parser
import numpy as np
import pandas as pd

from libb import is_null as _is_null

logger = logging.getLogger(__name__)

INT32_RANGE = range(-2**31, 2**31)
INT64_RANGE = range(-2**63, 2**63)


class DbType(Enum):
    """Semantic scalar kind of a command parameter.
    """
    ANSI_STRING = 'AnsiString'
    BINARY = 'Binary'
    BYTE = 'Byte'
    BOOLEAN = 'Boolean'
    CURRENCY = 'Currency'
    DATE = 'Date'
    DATETIME = 'DateTime'
    DECIMAL = 'Decimal'
    DOUBLE = 'Double'
    GUID = 'Guid'
    INT16 = 'Int16'
    INT32 = 'Int32'
    INT64 = 'Int64'
    OBJECT = 'Object'
    SBYTE = 'SByte'
    SINGLE = 'Single'
    STRING = 'String'
    TIME = 'Time'
    UINT16 = 'UInt16'
    UINT32 = 'UInt32'
    UINT64 = 'UInt64'
    VAR_NUMERIC = 'VarNumeric'
    ANSI_STRING_FIXED_LENGTH = 'AnsiStringFixedLength'
    STRING_FIXED_LENGTH = 'StringFixedLength'
    XML = 'Xml'
    DATETIME2 = 'DateTime2'
    DATETIME_OFFSET = 'DateTimeOffset'


class ParameterDirection(Enum):
    INPUT = 'Input'
    OUTPUT = 'Output'
    INPUT_OUTPUT = 'InputOutput'

    @property
    def is_output(self) -> bool:
        """True for directions whose value is written back by the database."""
        return self is not ParameterDirection.INPUT


class CommandType(Enum):
    TEXT = 'Text'
    STORED_PROCEDURE = 'StoredProcedure'
    TABLE_DIRECT = 'TableDirect'


def is_null(value: Any) -> bool:
    """Check whether a value represents SQL NULL (None, NaN, NA, NaT).

    Containers and text are never null, even when empty.
    """
    if isinstance(value, str | bytes) or not pd.api.types.is_scalar(value):
        return False
    return bool(_is_null(value))


# DbType inference - Python value -> DbType

_NUMPY_DB_TYPES: tuple[tuple[type, DbType], ...] = (
    (np.bool_, DbType.BOOLEAN),
    (np.uint8, DbType.BYTE),
    (np.int16, DbType.INT16),
    (np.int32, DbType.INT32),
    (np.int64, DbType.INT64),
    (np.float32, DbType.SINGLE),
    (np.float64, DbType.DOUBLE),
    (np.datetime64, DbType.DATETIME2),
)


def infer_db_type(value: Any) -> DbType:
    """Infer the DbType for a parameter value.

    The mapping is fixed: integers map by width, text to STRING, datetimes to
    DATETIME2, Decimal to DECIMAL, floats to DOUBLE (SINGLE for float32), UUID
    to GUID and byte sequences to BINARY. Nulls and every other type map to
    OBJECT.
    """
    if is_null(value):
        return DbType.OBJECT

    for np_type, db_type in _NUMPY_DB_TYPES:
        if isinstance(value, np_type):
            return db_type
    if isinstance(value, np.generic):
        return DbType.OBJECT

    if isinstance(value, bool):
        return DbType.BOOLEAN
    if isinstance(value, int):
        if value in INT32_RANGE:
            return DbType.INT32
        if value in INT64_RANGE:
            return DbType.INT64
        return DbType.DECIMAL
    if isinstance(value, str):
        return DbType.STRING
    if isinstance(value, datetime.datetime):
        return DbType.DATETIME2
    if isinstance(value, Decimal):
        return DbType.DECIMAL
    if isinstance(value, float):
        return DbType.DOUBLE
    if isinstance(value, uuid.UUID):
        return DbType.GUID
    if isinstance(value, bytes | bytearray | memoryview):
        return DbType.BINARY

    return DbType.OBJECT


# Type Converter - Python -> driver value conversion

def _convert_numpy_value(val: Any) -> Any:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.datetime64):
        return pd.Timestamp(val).to_pydatetime()
    return val.item()


class TypeConverter:
    """Parameter value normalization for NumPy and Pandas inputs.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a driver-compatible format."""
        if is_null(value):
            return None

        if isinstance(value, np.generic):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        if isinstance(value, memoryview | bytearray):
            return bytes(value)

        return value


# Generic conversion - driver value -> requested Python type

def unwrap_optional(hint: Any) -> Any:
    """Strip Optional[X] / X | None down to X."""
    if get_origin(hint) in {Union, types.UnionType}:
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def is_optional(hint: Any) -> bool:
    return get_origin(hint) in {Union, types.UnionType} and type(None) in get_args(hint)


def default_value(target: Any) -> Any:
    """Return the default for a target type: zero for numbers and bool, else None."""
    if is_optional(target):
        return None
    if target in {int, float, bool, Decimal}:
        return target()
    return None


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, float | Decimal):
        if not math.isfinite(value):
            raise ValueError(f'{value} is not finite')
        return int(round(value))
    if isinstance(value, str):
        return int(value.strip())
    return int(value)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        return Decimal(value.strip())
    return Decimal(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        text = value.strip().casefold()
        if text in {'true', 'false'}:
            return text == 'true'
        raise ValueError(f'{value!r} is not a valid boolean')
    if isinstance(value, int | float | Decimal | np.number):
        return value != 0
    raise TypeError(f'Cannot convert {type(value).__name__} to bool')


def _to_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, str):
        return dateutil.parser.parse(value)
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).to_pydatetime()
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    raise TypeError(f'Cannot convert {type(value).__name__} to datetime')


def _to_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    return _to_datetime(value).date()


def _to_time(value: Any) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.time()
    if isinstance(value, str):
        return dateutil.parser.parse(value).time()
    raise TypeError(f'Cannot convert {type(value).__name__} to time')


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytearray | memoryview):
        return bytes(value)
    raise TypeError(f'Cannot convert {type(value).__name__} to bytes')


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, bytes) and len(value) == 16:
        return uuid.UUID(bytes=value)
    return uuid.UUID(str(value))


_CONVERTERS = {
    int: _to_int,
    float: float,
    str: str,
    Decimal: _to_decimal,
    bool: _to_bool,
    datetime.datetime: _to_datetime,
    datetime.date: _to_date,
    datetime.time: _to_time,
    bytes: _to_bytes,
    uuid.UUID: _to_uuid,
}


def change_type(value: Any, target: Any) -> Any:
    """Convert a non-null value to the target type.

    Raises TypeError or ValueError (or ArithmeticError for malformed decimals)
    when the conversion is not representable.
    """
    target = unwrap_optional(target)
    if target is Any or target is object:
        return value
    if not isinstance(target, type):
        raise TypeError(f'Unsupported conversion target: {target!r}')

    if target is datetime.date and isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, target) and not (target is int and isinstance(value, bool)):
        return value

    converter = _CONVERTERS.get(target)
    if converter is not None:
        return converter(value)
    return target(value)
