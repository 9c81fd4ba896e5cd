from __future__ import annotations

import collections.abc
import types
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, NewType, Union, get_args, get_origin

from .geo import Circle, Point, Polygon

Int32 = NewType("Int32", int)
Float32 = NewType("Float32", float)
BigInt = NewType("BigInt", int)
Instant = NewType("Instant", datetime)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class TypeCode(Enum):
    STRING = "STRING"
    INT = "INT"
    LONG = "LONG"
    FLOAT = "FLOAT"
    DOUBLE = "DOUBLE"
    BIGINTEGER = "BIGINTEGER"
    BIGDECIMAL = "BIGDECIMAL"
    BOOLEAN = "BOOLEAN"
    BYTEARRAY = "BYTEARRAY"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    INSTANT = "INSTANT"
    GEO_POINT = "GEO_POINT"
    GEO_POLYGON = "GEO_POLYGON"
    ENUM = "ENUM"
    MAP = "MAP"
    FIELD_VALUE = "FIELD_VALUE"
    OBJECT = "OBJECT"
    ARRAY = "ARRAY"
    COLLECTION = "COLLECTION"
    POJO = "POJO"

    @property
    def is_atomic(self) -> bool:
        return self not in _RECURSIVE_CODES


_RECURSIVE_CODES = frozenset({TypeCode.ARRAY, TypeCode.COLLECTION, TypeCode.POJO})

_MARKERS: dict[Any, TypeCode] = {
    Int32: TypeCode.INT,
    Float32: TypeCode.FLOAT,
    BigInt: TypeCode.BIGINTEGER,
    Instant: TypeCode.INSTANT,
}

_SIMPLE_KEY_CODES = frozenset(
    {
        TypeCode.STRING,
        TypeCode.INT,
        TypeCode.LONG,
        TypeCode.BIGINTEGER,
        TypeCode.BIGDECIMAL,
        TypeCode.DATE,
        TypeCode.TIMESTAMP,
        TypeCode.INSTANT,
    }
)


@dataclass(frozen=True)
class NativeValue:
    value: Any


def unwrap_optional(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _classify(annotation: Any) -> TypeCode:
    tp = unwrap_optional(annotation)

    if tp in _MARKERS:
        return _MARKERS[tp]
    if tp is Any or tp is object:
        return TypeCode.OBJECT

    origin = get_origin(tp)
    if origin is not None:
        tp = origin

    if not isinstance(tp, type):
        return TypeCode.POJO

    if tp is str:
        return TypeCode.STRING
    if issubclass(tp, bool):
        return TypeCode.BOOLEAN
    if issubclass(tp, Enum):
        return TypeCode.ENUM
    if issubclass(tp, int):
        return TypeCode.LONG
    if issubclass(tp, float):
        return TypeCode.DOUBLE
    if issubclass(tp, Decimal):
        return TypeCode.BIGDECIMAL
    if issubclass(tp, (bytes, bytearray)):
        return TypeCode.BYTEARRAY
    # datetime subclasses date, so it has to be tested first.
    if issubclass(tp, datetime):
        return TypeCode.TIMESTAMP
    if issubclass(tp, date):
        return TypeCode.DATE
    if issubclass(tp, Point):
        return TypeCode.GEO_POINT
    if issubclass(tp, Polygon):
        return TypeCode.GEO_POLYGON
    if issubclass(tp, NativeValue):
        return TypeCode.FIELD_VALUE
    if issubclass(tp, tuple):
        return TypeCode.ARRAY
    if issubclass(tp, collections.abc.Mapping):
        return TypeCode.MAP
    if issubclass(tp, (collections.abc.Sequence, collections.abc.Set)) and not issubclass(tp, str):
        return TypeCode.COLLECTION
    return TypeCode.POJO


def classify_for_write(tp: Any) -> TypeCode:
    return _classify(tp)


def classify_for_read(tp: Any) -> TypeCode:
    code = _classify(tp)
    # Stored geo shapes are plain maps; Circle is only ever a query argument.
    if code is TypeCode.POJO and unwrap_optional(tp) is Circle:
        return TypeCode.OBJECT
    return code


def classify_value(value: Any, hint: Any = None) -> TypeCode:
    hint = unwrap_optional(hint)
    if hint in _MARKERS:
        return _MARKERS[hint]
    code = classify_for_write(type(value))
    if code is TypeCode.LONG and not _INT64_MIN <= value <= _INT64_MAX:
        return TypeCode.BIGINTEGER
    return code


def is_simple_key_type(annotation: Any) -> bool:
    return classify_for_read(annotation) in _SIMPLE_KEY_CODES


def element_type(annotation: Any) -> Any:
    args = get_args(unwrap_optional(annotation))
    if not args:
        return Any
    if len(args) == 2 and args[1] is Ellipsis:
        return args[0]
    return args[0]


def map_types(annotation: Any) -> tuple[Any, Any]:
    args = get_args(unwrap_optional(annotation))
    if len(args) == 2:
        return args[0], args[1]
    return Any, Any
