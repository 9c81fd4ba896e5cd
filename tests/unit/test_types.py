from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import pytest

from nosqldata_py.geo import Circle, Point, Polygon
from nosqldata_py.types import (
    BigInt,
    Float32,
    Instant,
    Int32,
    NativeValue,
    TypeCode,
    classify_for_read,
    classify_for_write,
    classify_value,
    element_type,
    is_simple_key_type,
    map_types,
)


class Color(Enum):
    RED = 1


@dataclass
class Address:
    city: str


@pytest.mark.parametrize(
    ("tp", "code"),
    [
        (str, TypeCode.STRING),
        (Int32, TypeCode.INT),
        (int, TypeCode.LONG),
        (Float32, TypeCode.FLOAT),
        (float, TypeCode.DOUBLE),
        (BigInt, TypeCode.BIGINTEGER),
        (Decimal, TypeCode.BIGDECIMAL),
        (bool, TypeCode.BOOLEAN),
        (bytes, TypeCode.BYTEARRAY),
        (bytearray, TypeCode.BYTEARRAY),
        (datetime, TypeCode.TIMESTAMP),
        (date, TypeCode.DATE),
        (Instant, TypeCode.INSTANT),
        (Point, TypeCode.GEO_POINT),
        (Polygon, TypeCode.GEO_POLYGON),
        (tuple[int, ...], TypeCode.ARRAY),
        (list[str], TypeCode.COLLECTION),
        (set[str], TypeCode.COLLECTION),
        (frozenset[int], TypeCode.COLLECTION),
        (dict[str, int], TypeCode.MAP),
        (NativeValue, TypeCode.FIELD_VALUE),
        (Color, TypeCode.ENUM),
        (Any, TypeCode.OBJECT),
        (object, TypeCode.OBJECT),
        (Address, TypeCode.POJO),
    ],
)
def test_classify_for_read_maps_python_types(tp: Any, code: TypeCode) -> None:
    assert classify_for_read(tp) is code


def test_optional_types_classify_as_their_inner_type() -> None:
    assert classify_for_read(Optional[int]) is TypeCode.LONG
    assert classify_for_read(str | None) is TypeCode.STRING


def test_circle_is_decoded_natively_on_read_only() -> None:
    assert classify_for_write(Circle) is TypeCode.POJO
    assert classify_for_read(Circle) is TypeCode.OBJECT


def test_classify_value_honours_markers_and_widens_large_ints() -> None:
    assert classify_value(5, Int32) is TypeCode.INT
    assert classify_value(5) is TypeCode.LONG
    assert classify_value(2**70) is TypeCode.BIGINTEGER
    assert classify_value(True) is TypeCode.BOOLEAN


def test_atomic_codes() -> None:
    assert TypeCode.STRING.is_atomic
    assert not TypeCode.POJO.is_atomic
    assert not TypeCode.COLLECTION.is_atomic


def test_simple_key_types() -> None:
    assert is_simple_key_type(str)
    assert is_simple_key_type(Int32)
    assert is_simple_key_type(datetime)
    assert not is_simple_key_type(float)
    assert not is_simple_key_type(Address)


def test_element_and_map_types() -> None:
    assert element_type(list[int]) is int
    assert element_type(tuple[str, ...]) is str
    assert element_type(list) is Any
    assert map_types(dict[str, float]) == (str, float)
    assert map_types(dict) == (Any, Any)
