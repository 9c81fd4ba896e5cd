from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import fields, is_dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, cast, get_origin, TypeVar

from .errors import MappingError
from .geo import Circle, Point, Polygon
from .mapping import POINT_DISCRIMINATOR, POLYGON_DISCRIMINATOR, MappingContext
from .model import CLASS_FIELD, DOCUMENT_COLUMN, EntityDescriptor, PropertyDescriptor
from .types import (
    Int32,
    NativeValue,
    TypeCode,
    classify_for_read,
    classify_value,
    element_type,
    map_types,
    unwrap_optional,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _conversion_error(value: Any, code: TypeCode) -> MappingError:
    return MappingError(f"Conversion unknown from: {type(value).__name__} to {code.value}.")


def _parse_timestamp(raw: str) -> datetime:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as err:
        raise MappingError(f"invalid timestamp value: {raw!r}") from err


class NosqlConverter:
    def __init__(self, context: MappingContext | None = None) -> None:
        self._context = context or MappingContext()

    @property
    def context(self) -> MappingContext:
        return self._context

    # object -> row

    def to_row(
        self,
        obj: Any,
        *,
        skip_id: bool = False,
        entity: EntityDescriptor[Any] | None = None,
    ) -> dict[str, Any]:
        if obj is None or not is_dataclass(obj) or isinstance(obj, type):
            raise MappingError("entity must be a dataclass instance")

        desc = entity or self._context.entity(type(obj))
        id_name = desc.id_property.name
        row: dict[str, Any] = {}

        if not skip_id:
            id_value = getattr(obj, id_name)
            if id_value is None:
                raise MappingError(f"{type(obj).__name__}: id value is required")
            row.update(self.id_to_key(desc, id_value))

        doc: dict[str, Any] = {}
        if type(obj) is not desc.entity_type:
            doc[CLASS_FIELD] = self._context.discriminator(type(obj))

        for prop in self._context.properties(type(obj)).values():
            if prop.name == id_name or not prop.is_writable:
                continue
            doc[prop.name] = self.to_document_value(getattr(obj, prop.name), prop.python_type)

        row[DOCUMENT_COLUMN] = doc
        return row

    def id_to_key(self, entity: EntityDescriptor[Any], id_value: Any) -> dict[str, Any]:
        if id_value is None:
            raise MappingError(f"{entity.entity_type.__name__}: id value is required")

        if not entity.is_composite_key:
            col = entity.key_columns[0]
            return {col.name: self.to_document_value(id_value, col.python_type)}

        key_type = entity.composite_key_type
        if not isinstance(id_value, cast(type, key_type)):
            raise MappingError(
                f"{entity.entity_type.__name__}: id must be a {cast(type, key_type).__name__} instance"
            )
        key: dict[str, Any] = {}
        for col in entity.key_columns:
            value = getattr(id_value, col.name)
            if value is None:
                raise MappingError(f"{cast(type, key_type).__name__}: key field {col.name!r} is required")
            key[col.name] = self.to_document_value(value, col.python_type)
        return key

    def to_document_value(self, value: Any, hint: Any = Any) -> Any:
        if value is None:
            return None

        code = classify_value(value, hint)
        match code:
            case TypeCode.STRING:
                return value
            case TypeCode.INT | TypeCode.LONG:
                return int(value)
            case TypeCode.FLOAT | TypeCode.DOUBLE:
                return float(value)
            case TypeCode.BIGINTEGER:
                return Decimal(int(value))
            case TypeCode.BIGDECIMAL | TypeCode.BOOLEAN:
                return value
            case TypeCode.BYTEARRAY:
                return bytes(value)
            case TypeCode.TIMESTAMP | TypeCode.INSTANT:
                return value
            case TypeCode.DATE:
                return datetime(value.year, value.month, value.day)
            case TypeCode.ENUM:
                return value.name
            case TypeCode.GEO_POINT:
                return {CLASS_FIELD: POINT_DISCRIMINATOR, "type": "point", "coordinates": [value.x, value.y]}
            case TypeCode.GEO_POLYGON:
                return {"type": "polygon", "coordinates": [[[p.x, p.y] for p in value]]}
            case TypeCode.MAP:
                return self._map_to_document(value, hint)
            case TypeCode.ARRAY | TypeCode.COLLECTION:
                item_hint = element_type(hint)
                return [self.to_document_value(item, item_hint) for item in value]
            case TypeCode.FIELD_VALUE:
                return value.value
            case TypeCode.POJO:
                return self._pojo_to_document(value, hint)
            case _:
                raise MappingError(f"Simple type: {code.value} not supported.")

    def _map_to_document(self, value: Mapping[Any, Any], hint: Any) -> dict[str, Any]:
        _, value_hint = map_types(hint)
        out: dict[str, Any] = {}
        for k, v in value.items():
            if k is None:
                raise MappingError("Unsupported null map key")
            if isinstance(k, Enum):
                key = k.name
            elif isinstance(k, str):
                key = k
            else:
                raise MappingError(f"Unsupported map key type: {type(k).__name__}")
            out[key] = self.to_document_value(v, value_hint)
        return out

    def _pojo_to_document(self, value: Any, hint: Any) -> dict[str, Any]:
        if not is_dataclass(value) or isinstance(value, type):
            raise MappingError(f"no mapping metadata for type: {type(value).__name__}")

        doc: dict[str, Any] = {}
        if type(value) is not unwrap_optional(hint):
            doc[CLASS_FIELD] = self._context.discriminator(type(value))
        for prop in self._context.properties(type(value)).values():
            if not prop.is_writable:
                continue
            doc[prop.name] = self.to_document_value(getattr(value, prop.name), prop.python_type)
        return doc

    def convert_parameter(self, value: Any) -> Any:
        # Geo functions take plain GeoJSON, without the discriminator.
        if isinstance(value, Point):
            return value.to_geojson()
        return self.to_document_value(value)

    @staticmethod
    def to_sql_type(value: Any, hint: Any = None) -> str:
        if value is None:
            raise MappingError("Param value can not be a null value.")
        if isinstance(value, NativeValue):
            return NosqlConverter.to_sql_type(value.value)
        if isinstance(value, bool):
            return "Boolean"
        if isinstance(value, (str, Enum)):
            return "String"
        if isinstance(value, int):
            code = classify_value(value, hint)
            if code is TypeCode.INT or unwrap_optional(hint) is Int32:
                return "Integer"
            if code is TypeCode.BIGINTEGER:
                return "Number"
            return "Long"
        if isinstance(value, Decimal):
            return "Number"
        if isinstance(value, float):
            return "Double"
        if isinstance(value, (bytes, bytearray)):
            return "Binary"
        if isinstance(value, date):
            return "Timestamp"
        if isinstance(value, (Point, Polygon, Circle)):
            return "JSON"
        if isinstance(value, (list, tuple)):
            if not value:
                return "ARRAY(ANY)"
            item_type = NosqlConverter.to_sql_type(value[0])
            for item in value[1:]:
                if NosqlConverter.to_sql_type(item) != item_type:
                    logger.debug("Not all entries in the array map to the same type. Will use ARRAY(ANY).")
                    return "ARRAY(ANY)"
            return f"ARRAY({item_type})"
        if isinstance(value, (set, frozenset)):
            return NosqlConverter.to_sql_type(list(value))
        if isinstance(value, Mapping):
            return "MAP(ANY)"
        raise MappingError(f"Unsupported type: {type(value).__name__}")

    def set_id(self, obj: T, generated: Any, *, entity: EntityDescriptor[Any] | None = None) -> T:
        desc = entity or self._context.entity(type(obj))
        id_prop = desc.id_property
        value = self.convert_value(generated, id_prop.python_type)
        return cast(T, replace(cast(Any, obj), **{id_prop.name: value}))

    # row -> object

    def read(self, target_type: type[T], row: Mapping[str, Any]) -> T:
        if target_type is dict or get_origin(target_type) is dict:
            return cast(T, dict(row))

        desc = self._context.entity(target_type)
        doc = self._document_of(row)

        cls: type[Any] = target_type
        discriminator = doc.get(CLASS_FIELD)
        if isinstance(discriminator, str):
            candidate = self._context.resolve_discriminator(discriminator)
            if candidate is not None and issubclass(candidate, target_type):
                cls = candidate

        kwargs: dict[str, Any] = {}
        id_prop = desc.id_property
        id_value = self._read_id(desc, row)
        if id_value is not None:
            kwargs[id_prop.name] = id_value

        for prop in self._context.properties(cls).values():
            if prop.name == id_prop.name or not prop.is_writable:
                continue
            if prop.name in doc:
                kwargs[prop.name] = self.convert_value(doc[prop.name], prop.python_type)
            elif prop.name in row and prop.name != DOCUMENT_COLUMN:
                kwargs[prop.name] = self.convert_value(row[prop.name], prop.python_type)

        return cast(T, self._instantiate(cls, kwargs))

    def read_projection(self, target_type: type[T], row: Mapping[str, Any]) -> T:
        """Reads a projection row: key columns at the top level, the rest under ``kv_json_``."""
        doc = self._document_of(row)
        kwargs: dict[str, Any] = {}
        for prop in self._context.properties(target_type).values():
            if not prop.is_writable:
                continue
            if prop.name in row and prop.name != DOCUMENT_COLUMN:
                raw = row[prop.name]
            elif prop.name in doc:
                raw = doc[prop.name]
            elif prop.is_composite_key or is_dataclass(unwrap_optional(prop.python_type)):
                raw = self._maybe_key_object(unwrap_optional(prop.python_type), row)
                if raw is None:
                    continue
                kwargs[prop.name] = raw
                continue
            else:
                continue
            kwargs[prop.name] = self.convert_value(raw, prop.python_type)
        return cast(T, self._instantiate(target_type, kwargs))

    def _maybe_key_object(self, key_type: Any, row: Mapping[str, Any]) -> Any:
        if not isinstance(key_type, type) or not is_dataclass(key_type):
            return None
        names = [f.name for f in fields(key_type)]
        if not names or not all(n in row for n in names):
            return None
        props = self._context.properties(key_type)
        kwargs = {n: self.convert_value(row[n], props[n].python_type) for n in names}
        return self._instantiate(key_type, kwargs)

    def _document_of(self, row: Mapping[str, Any]) -> Mapping[str, Any]:
        doc = row.get(DOCUMENT_COLUMN)
        if doc is None:
            return {}
        if isinstance(doc, str):
            try:
                doc = json.loads(doc)
            except json.JSONDecodeError as err:
                raise MappingError(f"{DOCUMENT_COLUMN} is not valid JSON") from err
        if not isinstance(doc, Mapping):
            raise MappingError(f"{DOCUMENT_COLUMN} must be a map (got {type(doc).__name__})")
        return doc

    def _read_id(self, desc: EntityDescriptor[Any], row: Mapping[str, Any]) -> Any:
        id_prop = desc.id_property
        if not desc.is_composite_key:
            raw = row.get(id_prop.name)
            return None if raw is None else self.convert_value(raw, id_prop.python_type)

        key_type = cast(type[Any], desc.composite_key_type)
        present = [c for c in desc.key_columns if row.get(c.name) is not None]
        if not present:
            return None
        kwargs = {c.name: self.convert_value(row.get(c.name), c.python_type) for c in desc.key_columns}
        return self._instantiate(key_type, kwargs)

    def _instantiate(self, cls: type[Any], kwargs: dict[str, Any]) -> Any:
        try:
            return cls(**kwargs)
        except TypeError as err:
            raise MappingError(f"Failed to instantiate entity type: {cls.__name__}: {err}") from err

    def convert_value(self, value: Any, annotation: Any = Any) -> Any:
        if value is None:
            return None

        code = classify_for_read(annotation)
        if code is TypeCode.OBJECT:
            return self._decode_untyped(value)
        if code is TypeCode.FIELD_VALUE:
            return NativeValue(value)
        if isinstance(value, Mapping):
            return self._read_map(value, annotation, code)
        if isinstance(value, (list, tuple)):
            return self._read_array(value, annotation, code)
        return self._read_scalar(value, annotation, code)

    def _read_scalar(self, value: Any, annotation: Any, code: TypeCode) -> Any:
        if isinstance(value, bool):
            if code is TypeCode.BOOLEAN:
                return value
            if code is TypeCode.STRING:
                return "true" if value else "false"
            raise _conversion_error(value, code)

        if isinstance(value, str):
            return self._read_string(value, annotation, code)

        if isinstance(value, int):
            match code:
                case TypeCode.INT | TypeCode.LONG | TypeCode.BIGINTEGER:
                    return value
                case TypeCode.FLOAT | TypeCode.DOUBLE:
                    return float(value)
                case TypeCode.BIGDECIMAL:
                    return Decimal(value)
                case TypeCode.STRING:
                    return str(value)
            raise _conversion_error(value, code)

        if isinstance(value, float):
            match code:
                case TypeCode.FLOAT | TypeCode.DOUBLE:
                    return value
                case TypeCode.BIGDECIMAL:
                    return Decimal(str(value))
                case TypeCode.STRING:
                    return str(value)
            raise _conversion_error(value, code)

        if isinstance(value, Decimal):
            match code:
                case TypeCode.BIGDECIMAL:
                    return value
                case TypeCode.BIGINTEGER | TypeCode.LONG | TypeCode.INT:
                    if value != value.to_integral_value():
                        raise _conversion_error(value, code)
                    return int(value)
                case TypeCode.FLOAT | TypeCode.DOUBLE:
                    return float(value)
                case TypeCode.STRING:
                    return str(value)
            raise _conversion_error(value, code)

        if isinstance(value, datetime):
            match code:
                case TypeCode.TIMESTAMP | TypeCode.INSTANT:
                    return value
                case TypeCode.DATE:
                    return value.date()
                case TypeCode.STRING:
                    return value.isoformat()
            raise _conversion_error(value, code)

        if isinstance(value, (bytes, bytearray)):
            match code:
                case TypeCode.BYTEARRAY:
                    return bytearray(value) if unwrap_optional(annotation) is bytearray else bytes(value)
                case TypeCode.STRING:
                    return base64.b64encode(value).decode("ascii")
            raise _conversion_error(value, code)

        raise MappingError(f"Unexpected value: {type(value).__name__}")

    def _read_string(self, value: str, annotation: Any, code: TypeCode) -> Any:
        match code:
            case TypeCode.STRING:
                return value
            case TypeCode.BYTEARRAY:
                try:
                    raw = base64.b64decode(value, validate=True)
                except (binascii.Error, ValueError) as err:
                    raise MappingError("invalid base64 value for byte array") from err
                return bytearray(raw) if unwrap_optional(annotation) is bytearray else raw
            case TypeCode.TIMESTAMP | TypeCode.INSTANT:
                return _parse_timestamp(value)
            case TypeCode.DATE:
                return _parse_timestamp(value).date()
            case TypeCode.ENUM:
                enum_type = cast(type[Enum], unwrap_optional(annotation))
                if value in enum_type.__members__:
                    return enum_type[value]
                try:
                    return enum_type[value.strip().upper()]
                except KeyError as err:
                    raise MappingError(f"{value!r} is not a valid {enum_type.__name__}") from err
            case TypeCode.BIGDECIMAL:
                try:
                    return Decimal(value)
                except InvalidOperation as err:
                    raise _conversion_error(value, code) from err
        raise _conversion_error(value, code)

    def _read_array(self, value: Sequence[Any], annotation: Any, code: TypeCode) -> Any:
        if code is TypeCode.BYTEARRAY:
            return bytes(value)

        item_hint = element_type(annotation)
        items = [self.convert_value(item, item_hint) for item in value]

        if code is TypeCode.ARRAY:
            return tuple(items)
        if code is TypeCode.COLLECTION:
            tp = unwrap_optional(annotation)
            origin = get_origin(tp) or tp
            if isinstance(origin, type) and issubclass(origin, frozenset):
                return frozenset(items)
            if isinstance(origin, type) and not issubclass(origin, (list, Sequence)):
                return set(items)
            return items
        raise _conversion_error(value, code)

    def _read_map(self, value: Mapping[str, Any], annotation: Any, code: TypeCode) -> Any:
        discriminator = value.get(CLASS_FIELD)
        if not isinstance(discriminator, str):
            discriminator = None

        if code is TypeCode.GEO_POINT or discriminator == POINT_DISCRIMINATOR:
            return _read_point(value)
        if code is TypeCode.GEO_POLYGON or discriminator == POLYGON_DISCRIMINATOR:
            return _read_polygon(value)

        if code is TypeCode.MAP:
            return self._read_untyped_map(value, annotation)

        if code is TypeCode.POJO:
            expected = unwrap_optional(annotation)
            cls: type[Any] | None = expected if isinstance(expected, type) and is_dataclass(expected) else None
            if discriminator is not None:
                candidate = self._context.resolve_discriminator(discriminator)
                if candidate is not None and (cls is None or issubclass(candidate, cls)):
                    cls = candidate
            if cls is None:
                return self._read_untyped_map(value, Any)
            return self._read_pojo(cls, value)

        raise _conversion_error(value, code)

    def _read_pojo(self, cls: type[Any], doc: Mapping[str, Any]) -> Any:
        kwargs: dict[str, Any] = {}
        for prop in self._context.properties(cls).values():
            if prop.is_writable and prop.name in doc:
                kwargs[prop.name] = self.convert_value(doc[prop.name], prop.python_type)
        return self._instantiate(cls, kwargs)

    def _read_untyped_map(self, value: Mapping[str, Any], annotation: Any) -> dict[Any, Any]:
        key_hint, value_hint = map_types(annotation)
        key_type = unwrap_optional(key_hint)
        out: dict[Any, Any] = {}
        for k, v in value.items():
            if isinstance(key_type, type) and issubclass(key_type, Enum):
                try:
                    key: Any = key_type[k]
                except KeyError as err:
                    raise MappingError(f"{k!r} is not a valid {key_type.__name__}") from err
            else:
                key = k
            out[key] = self.convert_value(v, value_hint)
        return out

    def _decode_untyped(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            discriminator = value.get(CLASS_FIELD)
            if isinstance(discriminator, str):
                if discriminator == POINT_DISCRIMINATOR:
                    return _read_point(value)
                if discriminator == POLYGON_DISCRIMINATOR:
                    return _read_polygon(value)
                candidate = self._context.resolve_discriminator(discriminator)
                if candidate is not None:
                    return self._read_pojo(candidate, value)
            return {k: self._decode_untyped(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._decode_untyped(v) for v in value]
        return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _coords(value: Any) -> Point:
    if not isinstance(value, (list, tuple)) or len(value) < 2 or not _is_number(value[0]) or not _is_number(value[1]):
        raise MappingError(f"Unexpected GeoJson point representation: {value!r}")
    return Point(float(value[0]), float(value[1]))


def _read_point(value: Mapping[str, Any]) -> Point:
    return _coords(value.get("coordinates"))


def _read_polygon(value: Mapping[str, Any]) -> Polygon:
    coordinates = value.get("coordinates")
    if (
        not isinstance(coordinates, (list, tuple))
        or not coordinates
        or not isinstance(coordinates[0], (list, tuple))
        or not coordinates[0]
        or not isinstance(coordinates[0][0], (list, tuple))
    ):
        raise MappingError(f"Unexpected GeoJson polygon representation: {dict(value)!r}")
    try:
        return Polygon([_coords(c) for c in coordinates[0]])
    except ValueError as err:
        raise MappingError(f"Unexpected GeoJson polygon representation: {dict(value)!r}") from err
