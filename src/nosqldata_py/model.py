from __future__ import annotations

from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, cast, Generic, get_type_hints, overload, TypeVar

from .errors import EntityDefinitionError
from .types import TypeCode, classify_for_read, is_simple_key_type, unwrap_optional

C = TypeVar("C")
T = TypeVar("T")

DOCUMENT_COLUMN = "kv_json_"
CLASS_FIELD = "#class"
DEFAULT_ID_NAME = "id"

NOTSET_TABLE_VALUE = -1
NOTSET_PRIMARY_KEY_ORDER = -1
NOTSET_SHARD_KEY = True
DEFAULT_AUTO_CREATE_TABLE = True

_METADATA_KEY = "nosqldata"
_TABLE_ATTR = "__nosql_table__"


class CapacityMode(Enum):
    PROVISIONED = "PROVISIONED"
    ON_DEMAND = "ON_DEMAND"


class Consistency(Enum):
    EVENTUAL = "EVENTUAL"
    ABSOLUTE = "ABSOLUTE"


class Durability(Enum):
    COMMIT_NO_SYNC = "COMMIT_NO_SYNC"
    COMMIT_SYNC = "COMMIT_SYNC"
    COMMIT_WRITE_NO_SYNC = "COMMIT_WRITE_NO_SYNC"


class TtlUnit(Enum):
    DAYS = "DAYS"
    HOURS = "HOURS"


class Generation(Enum):
    IDENTITY = "IDENTITY"
    UUID = "UUID"


@dataclass(frozen=True)
class Ttl:
    value: int = 0
    unit: TtlUnit = TtlUnit.DAYS

    def __post_init__(self) -> None:
        if self.value < 0:
            raise EntityDefinitionError(f"ttl must be >= 0 (got {self.value})")

    @property
    def enabled(self) -> bool:
        return self.value != 0

    def __str__(self) -> str:
        return f"{self.value} {self.unit.value}"

    @staticmethod
    def parse(raw: str | None) -> Ttl:
        if not raw:
            return Ttl()
        parts = raw.split()
        if len(parts) != 2:
            raise EntityDefinitionError(f"invalid ttl: {raw!r}")
        try:
            return Ttl(int(parts[0]), TtlUnit(parts[1].upper()))
        except ValueError as err:
            raise EntityDefinitionError(f"invalid ttl: {raw!r}") from err


@dataclass(frozen=True)
class TableOptions:
    table_name: str | None = None
    capacity_mode: CapacityMode = CapacityMode.PROVISIONED
    read_units: int = NOTSET_TABLE_VALUE
    write_units: int = NOTSET_TABLE_VALUE
    storage_gb: int = NOTSET_TABLE_VALUE
    ttl: Ttl = field(default_factory=Ttl)
    consistency: Consistency = Consistency.EVENTUAL
    durability: Durability = Durability.COMMIT_NO_SYNC
    timeout_ms: int = 0
    auto_create_table: bool = DEFAULT_AUTO_CREATE_TABLE

    def __post_init__(self) -> None:
        if self.timeout_ms < 0:
            raise EntityDefinitionError("timeout_ms must be >= 0")


def nosql_table(
    cls: type[C] | None = None,
    *,
    table_name: str | None = None,
    capacity_mode: CapacityMode = CapacityMode.PROVISIONED,
    read_units: int = NOTSET_TABLE_VALUE,
    write_units: int = NOTSET_TABLE_VALUE,
    storage_gb: int = NOTSET_TABLE_VALUE,
    ttl: Ttl | None = None,
    consistency: Consistency = Consistency.EVENTUAL,
    durability: Durability = Durability.COMMIT_NO_SYNC,
    timeout_ms: int = 0,
    auto_create_table: bool = DEFAULT_AUTO_CREATE_TABLE,
) -> Any:
    options = TableOptions(
        table_name=table_name,
        capacity_mode=capacity_mode,
        read_units=read_units,
        write_units=write_units,
        storage_gb=storage_gb,
        ttl=ttl or Ttl(),
        consistency=consistency,
        durability=durability,
        timeout_ms=timeout_ms,
        auto_create_table=auto_create_table,
    )

    def wrap(target: type[C]) -> type[C]:
        setattr(target, _TABLE_ATTR, options)
        return target

    if cls is None:
        return wrap
    return wrap(cls)


def table_options_of(tp: type[Any]) -> TableOptions | None:
    # vars() so that subclasses of a table entity are not tables themselves.
    return cast(TableOptions | None, vars(tp).get(_TABLE_ATTR))


@overload
def nosql_field(
    *,
    id: bool = False,
    generated: bool = False,
    key: bool = False,
    shard_key: bool = NOTSET_SHARD_KEY,
    order: int = NOTSET_PRIMARY_KEY_ORDER,
    ignore: bool = False,
) -> Any: ...


@overload
def nosql_field(
    *,
    id: bool = False,
    generated: bool = False,
    key: bool = False,
    shard_key: bool = NOTSET_SHARD_KEY,
    order: int = NOTSET_PRIMARY_KEY_ORDER,
    ignore: bool = False,
    default: Any,
) -> Any: ...


@overload
def nosql_field(
    *,
    id: bool = False,
    generated: bool = False,
    key: bool = False,
    shard_key: bool = NOTSET_SHARD_KEY,
    order: int = NOTSET_PRIMARY_KEY_ORDER,
    ignore: bool = False,
    default_factory: Any,
) -> Any: ...


def nosql_field(
    *,
    id: bool = False,
    generated: bool = False,
    key: bool = False,
    shard_key: bool = NOTSET_SHARD_KEY,
    order: int = NOTSET_PRIMARY_KEY_ORDER,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("nosql_field: cannot set both default and default_factory")
    if generated and not id:
        raise ValueError("nosql_field: generated requires id=True")

    opts: dict[str, Any] = {"id": id, "generated": generated, "ignore": ignore}
    if key:
        opts["key"] = {"shard_key": shard_key, "order": order}

    return field(default=default, default_factory=default_factory, metadata={_METADATA_KEY: opts})


def nosql_id(*, generated: bool = False, default: Any = MISSING) -> Any:
    if generated and default is MISSING:
        default = None
    return nosql_field(id=True, generated=generated, default=default)


def nosql_key(*, shard_key: bool = NOTSET_SHARD_KEY, order: int = NOTSET_PRIMARY_KEY_ORDER) -> Any:
    return nosql_field(key=True, shard_key=shard_key, order=order)


@dataclass(frozen=True)
class PropertyDescriptor:
    name: str
    python_type: Any
    type_code: TypeCode
    is_id: bool = False
    is_key_component: bool = False
    is_writable: bool = True
    is_composite_key: bool = False
    auto_generated: bool = False
    shard_key: bool = NOTSET_SHARD_KEY
    order: int = NOTSET_PRIMARY_KEY_ORDER
    has_default: bool = False


@dataclass(frozen=True)
class KeyColumn:
    name: str
    python_type: Any
    type_code: TypeCode
    shard_key: bool


def resolve_type_hints(tp: type[Any]) -> dict[str, Any]:
    try:
        return get_type_hints(tp)
    except NameError as err:
        raise EntityDefinitionError(f"{tp.__name__}: cannot resolve field annotations: {err}") from err


def describe_properties(tp: type[Any]) -> dict[str, PropertyDescriptor]:
    if not is_dataclass(tp):
        raise EntityDefinitionError(f"{getattr(tp, '__name__', tp)!s} must be a dataclass")

    hints = resolve_type_hints(tp)
    props: dict[str, PropertyDescriptor] = {}
    for dc_field in fields(tp):
        opts = cast(dict[str, Any], dc_field.metadata.get(_METADATA_KEY, {}))
        annotation = hints.get(dc_field.name, Any)
        key_opts = cast(dict[str, Any] | None, opts.get("key"))
        code = classify_for_read(annotation)
        props[dc_field.name] = PropertyDescriptor(
            name=dc_field.name,
            python_type=annotation,
            type_code=code,
            is_id=bool(opts.get("id", False)),
            is_key_component=key_opts is not None,
            is_writable=not bool(opts.get("ignore", False)) and dc_field.init,
            auto_generated=bool(opts.get("generated", False)),
            shard_key=bool(key_opts["shard_key"]) if key_opts else NOTSET_SHARD_KEY,
            order=int(key_opts["order"]) if key_opts else NOTSET_PRIMARY_KEY_ORDER,
            has_default=dc_field.default is not MISSING or dc_field.default_factory is not MISSING,
        )
    return props


def _is_composite_type(annotation: Any) -> bool:
    tp = unwrap_optional(annotation)
    return isinstance(tp, type) and is_dataclass(tp)


def composite_key_columns(key_type: type[Any]) -> tuple[KeyColumn, ...]:
    name = key_type.__name__
    if table_options_of(key_type) is not None:
        raise EntityDefinitionError(f"{name}: a class cannot be both a table entity and a composite key")

    props = [p for p in describe_properties(key_type).values() if p.is_writable]
    if not props:
        raise EntityDefinitionError(f"{name}: composite key class has no key fields")

    for prop in props:
        if prop.name.lower() == DOCUMENT_COLUMN:
            raise EntityDefinitionError(f"{name}: key field name {prop.name!r} is reserved")
        if not is_simple_key_type(prop.python_type):
            raise EntityDefinitionError(
                f"{name}: composite key field {prop.name!r} must be a simple type "
                f"(got {prop.type_code.value})"
            )
        if prop.is_id:
            raise EntityDefinitionError(f"{name}: composite key field {prop.name!r} cannot be an id")

    if not any(p.shard_key for p in props):
        raise EntityDefinitionError(f"{name}: composite key requires at least one shard key")

    ordered = [p for p in props if p.order != NOTSET_PRIMARY_KEY_ORDER]
    if ordered and len(ordered) != len(props):
        raise EntityDefinitionError(
            f"{name}: either all or none of the composite key fields must specify order"
        )

    if ordered:
        orders = [p.order for p in props]
        if len(set(orders)) != len(orders):
            raise EntityDefinitionError(f"{name}: composite key orders must be unique")
        shard_orders = [p.order for p in props if p.shard_key]
        other_orders = [p.order for p in props if not p.shard_key]
        if other_orders and max(shard_orders) > min(other_orders):
            raise EntityDefinitionError(
                f"{name}: shard key orders must be lower than non-shard key orders"
            )
        props.sort(key=_explicit_order)
    else:
        props.sort(key=_implicit_order)

    return tuple(
        KeyColumn(
            name=p.name,
            python_type=unwrap_optional(p.python_type),
            type_code=p.type_code,
            shard_key=p.shard_key,
        )
        for p in props
    )


def _explicit_order(prop: PropertyDescriptor) -> int:
    return prop.order


def _implicit_order(prop: PropertyDescriptor) -> tuple[bool, str]:
    return (not prop.shard_key, prop.name.lower())


@dataclass(frozen=True)
class EntityDescriptor(Generic[T]):
    entity_type: type[T]
    options: TableOptions
    table_name: str
    properties: Mapping[str, PropertyDescriptor]
    id_property: PropertyDescriptor
    key_columns: tuple[KeyColumn, ...]
    document_column: str = DOCUMENT_COLUMN

    @property
    def shard_keys(self) -> tuple[KeyColumn, ...]:
        return tuple(c for c in self.key_columns if c.shard_key)

    @property
    def non_shard_keys(self) -> tuple[KeyColumn, ...]:
        return tuple(c for c in self.key_columns if not c.shard_key)

    @property
    def is_composite_key(self) -> bool:
        return self.id_property.is_composite_key

    @property
    def composite_key_type(self) -> type[Any] | None:
        if not self.is_composite_key:
            return None
        return cast(type[Any], unwrap_optional(self.id_property.python_type))

    @property
    def auto_generated(self) -> bool:
        return self.id_property.auto_generated

    @property
    def generation(self) -> Generation | None:
        if not self.auto_generated:
            return None
        if self.id_property.type_code is TypeCode.STRING:
            return Generation.UUID
        return Generation.IDENTITY

    def is_key_column(self, name: str) -> bool:
        return any(c.name == name for c in self.key_columns)

    @classmethod
    def from_dataclass(
        cls,
        entity_type: type[T],
        *,
        table_name: str | None = None,
        options: TableOptions | None = None,
    ) -> EntityDescriptor[T]:
        if not is_dataclass(entity_type):
            raise EntityDefinitionError("entity_type must be a dataclass")

        options = options or table_options_of(entity_type) or TableOptions()
        name = entity_type.__name__
        props = describe_properties(entity_type)

        for prop in props.values():
            if prop.is_key_component:
                raise EntityDefinitionError(
                    f"{name}: key field {prop.name!r} is only allowed on a composite key class"
                )

        id_fields = [p for p in props.values() if p.is_id]
        if len(id_fields) > 1:
            raise EntityDefinitionError(f"{name}: entity must define at most one id field (found {len(id_fields)})")
        if not id_fields:
            implicit = props.get(DEFAULT_ID_NAME)
            if implicit is None:
                raise EntityDefinitionError(
                    f"{name}: entity must define an id field (nosql_id() or a field named {DEFAULT_ID_NAME!r})"
                )
            id_fields = [implicit]

        id_prop = id_fields[0]
        if not id_prop.is_writable:
            raise EntityDefinitionError(f"{name}: id field {id_prop.name!r} cannot be ignored")
        if id_prop.name.lower() == DOCUMENT_COLUMN:
            raise EntityDefinitionError(f"{name}: id field name {id_prop.name!r} is reserved")

        if _is_composite_type(id_prop.python_type):
            if id_prop.auto_generated:
                raise EntityDefinitionError(f"{name}: composite key id cannot be auto generated")
            key_columns = composite_key_columns(cast(type[Any], unwrap_optional(id_prop.python_type)))
            for col in key_columns:
                if col.name in props:
                    raise EntityDefinitionError(
                        f"{name}: composite key field {col.name!r} is also declared on the entity"
                    )
            id_prop = _replace_id(id_prop, composite=True)
        else:
            if not is_simple_key_type(id_prop.python_type):
                raise EntityDefinitionError(
                    f"{name}: id field {id_prop.name!r} must be a simple type or a composite key class"
                )
            if id_prop.auto_generated and id_prop.type_code not in {
                TypeCode.STRING,
                TypeCode.INT,
                TypeCode.LONG,
                TypeCode.BIGINTEGER,
                TypeCode.BIGDECIMAL,
            }:
                raise EntityDefinitionError(
                    f"{name}: auto generated id must be a string or a number (got {id_prop.type_code.value})"
                )
            id_prop = _replace_id(id_prop, composite=False)
            key_columns = (
                KeyColumn(
                    name=id_prop.name,
                    python_type=unwrap_optional(id_prop.python_type),
                    type_code=id_prop.type_code,
                    shard_key=True,
                ),
            )

        resolved = dict(props)
        resolved[id_prop.name] = id_prop

        return cls(
            entity_type=entity_type,
            options=options,
            table_name=table_name or options.table_name or name,
            properties=resolved,
            id_property=id_prop,
            key_columns=key_columns,
        )


def _replace_id(prop: PropertyDescriptor, *, composite: bool) -> PropertyDescriptor:
    return PropertyDescriptor(
        name=prop.name,
        python_type=prop.python_type,
        type_code=prop.type_code,
        is_id=True,
        is_key_component=False,
        is_writable=True,
        is_composite_key=composite,
        auto_generated=prop.auto_generated,
        has_default=prop.has_default,
    )
