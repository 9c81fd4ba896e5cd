from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_TIMESTAMP_PRECISION, MAX_TIMESTAMP_PRECISION, NosqlDbConfig
from .errors import EntityDefinitionError, SchemaMismatchError, StoreError, ValidationError
from .model import (
    DOCUMENT_COLUMN,
    NOTSET_TABLE_VALUE,
    CapacityMode,
    EntityDescriptor,
    Generation,
    KeyColumn,
    TableOptions,
    Ttl,
)
from .store import StoreClient, TableLimits, TableState
from .store_errors import map_store_error
from .types import TypeCode

logger = logging.getLogger(__name__)

GENERATED_ALWAYS = "GENERATED ALWAYS as IDENTITY (NO CYCLE)"
GENERATED_UUID = "AS UUID GENERATED BY DEFAULT"

_COLUMN_TYPES: dict[TypeCode, str] = {
    TypeCode.STRING: "STRING",
    TypeCode.INT: "INTEGER",
    TypeCode.LONG: "LONG",
    TypeCode.BIGINTEGER: "NUMBER",
    TypeCode.BIGDECIMAL: "NUMBER",
    TypeCode.DATE: "TIMESTAMP",
    TypeCode.TIMESTAMP: "TIMESTAMP",
    TypeCode.INSTANT: "TIMESTAMP",
}

_SQL_TYPES: dict[TypeCode, str] = {
    TypeCode.STRING: "String",
    TypeCode.INT: "Integer",
    TypeCode.LONG: "Long",
    TypeCode.BIGINTEGER: "Number",
    TypeCode.BIGDECIMAL: "Number",
    TypeCode.DATE: "Timestamp",
    TypeCode.TIMESTAMP: "Timestamp",
    TypeCode.INSTANT: "Timestamp",
}


def column_type(col: KeyColumn, *, timestamp_precision: int = DEFAULT_TIMESTAMP_PRECISION) -> str:
    base = _COLUMN_TYPES.get(col.type_code)
    if base is None:
        raise EntityDefinitionError(f"key column {col.name!r} has unsupported type {col.type_code.value}")
    if base == "TIMESTAMP":
        if not 0 <= timestamp_precision <= MAX_TIMESTAMP_PRECISION:
            raise ValidationError(f"timestamp_precision must be between 0 and {MAX_TIMESTAMP_PRECISION}")
        return f"TIMESTAMP({timestamp_precision})"
    return base


def id_sql_type(desc: EntityDescriptor[Any]) -> str:
    return _SQL_TYPES[desc.key_columns[0].type_code]


def table_limits(options: TableOptions) -> TableLimits | None:
    read, write, storage = options.read_units, options.write_units, options.storage_gb

    if options.capacity_mode is CapacityMode.ON_DEMAND:
        if storage == NOTSET_TABLE_VALUE:
            return None
        if storage <= 0:
            raise EntityDefinitionError("storage_gb must be > 0 for on demand tables")
        return TableLimits(read_units=0, write_units=0, storage_gb=storage, on_demand=True)

    values = (read, write, storage)
    if all(v == NOTSET_TABLE_VALUE for v in values):
        return None
    if any(v <= 0 for v in values):
        raise EntityDefinitionError(
            "provisioned tables require read_units, write_units and storage_gb to be > 0 "
            f"(got {read}, {write}, {storage})"
        )
    return TableLimits(read_units=read, write_units=write, storage_gb=storage)


def build_create_table_statement(
    desc: EntityDescriptor[Any],
    *,
    timestamp_precision: int = DEFAULT_TIMESTAMP_PRECISION,
) -> str:
    table = desc.table_name
    ttl = _ttl_clause(desc.options.ttl)

    if not desc.is_composite_key:
        col = desc.key_columns[0]
        definition = f"{col.name} {column_type(col, timestamp_precision=timestamp_precision)}"
        match desc.generation:
            case Generation.IDENTITY:
                definition += f" {GENERATED_ALWAYS}"
            case Generation.UUID:
                definition += f" {GENERATED_UUID}"
        return (
            f"CREATE TABLE IF NOT EXISTS {table} ({definition}, {DOCUMENT_COLUMN} JSON, "
            f"PRIMARY KEY({col.name})){ttl}"
        )

    columns = ", ".join(
        f"{c.name} {column_type(c, timestamp_precision=timestamp_precision)}" for c in desc.key_columns
    )
    key = "SHARD(" + ", ".join(c.name for c in desc.shard_keys) + ")"
    if desc.non_shard_keys:
        key += ", " + ", ".join(c.name for c in desc.non_shard_keys)
    return f"CREATE TABLE IF NOT EXISTS {table} ({columns}, {DOCUMENT_COLUMN} JSON, PRIMARY KEY({key})){ttl}"


def _ttl_clause(ttl: Ttl) -> str:
    if not ttl.enabled:
        return ""
    return f" USING TTL {ttl}"


def build_drop_table_statement(desc: EntityDescriptor[Any]) -> str:
    return f"DROP TABLE IF EXISTS {desc.table_name}"


def build_delete_all_statement(desc: EntityDescriptor[Any]) -> str:
    return f"DELETE FROM {desc.table_name}"


def build_select_all_statement(desc: EntityDescriptor[Any]) -> str:
    return f"SELECT * FROM {desc.table_name} t"


def build_count_statement(desc: EntityDescriptor[Any]) -> str:
    return f"SELECT count(*) FROM {desc.table_name}"


def build_update_statement(desc: EntityDescriptor[Any]) -> str:
    if desc.is_composite_key:
        raise ValidationError(f"{desc.table_name}: update by statement requires a simple id")
    id_name = desc.id_property.name
    return (
        f"DECLARE $id {id_sql_type(desc)}; $json JSON; "
        f"UPDATE {desc.table_name} t SET t.{DOCUMENT_COLUMN} = $json WHERE t.{id_name} = $id"
    )


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    generated: Generation | None = None


@dataclass(frozen=True)
class TableSchema:
    shard_keys: tuple[ColumnInfo, ...]
    primary_keys: tuple[ColumnInfo, ...]
    columns: tuple[ColumnInfo, ...]
    ttl: Ttl = field(default_factory=Ttl)

    @property
    def non_shard_keys(self) -> tuple[ColumnInfo, ...]:
        return self.primary_keys[len(self.shard_keys) :]

    @property
    def other_columns(self) -> tuple[ColumnInfo, ...]:
        keys = {c.name.lower() for c in self.primary_keys}
        return tuple(c for c in self.columns if c.name.lower() not in keys)

    def column(self, name: str) -> ColumnInfo | None:
        for col in self.columns:
            if col.name.lower() == name.lower():
                return col
        return None

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> TableSchema:
        shard = _columns(raw.get("shard_keys"), "shard_keys")
        primary = _columns(raw.get("primary_keys"), "primary_keys") or shard
        if [c.name for c in primary[: len(shard)]] != [c.name for c in shard]:
            raise ValidationError("table schema: primary_keys must start with the shard keys")
        ttl_raw = raw.get("ttl")
        try:
            ttl = Ttl.parse(str(ttl_raw)) if ttl_raw else Ttl()
        except EntityDefinitionError as err:
            raise ValidationError(f"table schema: invalid ttl {ttl_raw!r}") from err
        return TableSchema(
            shard_keys=shard,
            primary_keys=primary,
            columns=_columns(raw.get("columns"), "columns"),
            ttl=ttl,
        )


def _columns(raw: Any, name: str) -> tuple[ColumnInfo, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, Sequence) or isinstance(raw, str):
        raise ValidationError(f"table schema: {name} must be a list")

    out: list[ColumnInfo] = []
    for item in raw:
        if not isinstance(item, Mapping) or not item.get("name"):
            raise ValidationError(f"table schema: invalid {name} entry: {item!r}")
        generated = item.get("generated")
        try:
            gen = Generation(str(generated).upper()) if generated else None
        except ValueError as err:
            raise ValidationError(f"table schema: unknown generation {generated!r}") from err
        out.append(ColumnInfo(name=str(item["name"]), type=str(item.get("type", "")), generated=gen))
    return tuple(out)


def _base_type(sql_type: str) -> str:
    return sql_type.split("(", 1)[0].strip().upper()


def _describe(cols: Sequence[tuple[str, str]]) -> str:
    return "[" + ", ".join(f"{n} {t}" for n, t in cols) + "]"


def _compare(
    label: str,
    expected: Sequence[tuple[str, str]],
    actual: Sequence[tuple[str, str]],
) -> str | None:
    norm_expected = [(n.lower(), _base_type(t)) for n, t in expected]
    norm_actual = [(n.lower(), _base_type(t)) for n, t in actual]
    if norm_expected == norm_actual:
        return None
    return f"{label} mismatch: expected {_describe(expected)}, found {_describe(actual)}"


def validate_table_schema(
    desc: EntityDescriptor[Any],
    schema: TableSchema | Mapping[str, Any],
    *,
    timestamp_precision: int = DEFAULT_TIMESTAMP_PRECISION,
) -> list[str]:
    if not isinstance(schema, TableSchema):
        schema = TableSchema.from_mapping(schema)

    def expected(cols: Sequence[KeyColumn]) -> list[tuple[str, str]]:
        return [(c.name, column_type(c, timestamp_precision=timestamp_precision)) for c in cols]

    def actual(cols: Sequence[ColumnInfo]) -> list[tuple[str, str]]:
        return [(c.name, c.type) for c in cols]

    mismatches: list[str] = []
    for label, exp, act in (
        ("shard primary keys", expected(desc.shard_keys), actual(schema.shard_keys)),
        ("non-shard primary keys", expected(desc.non_shard_keys), actual(schema.non_shard_keys)),
        ("non primary key columns", [(DOCUMENT_COLUMN, "JSON")], actual(schema.other_columns)),
    ):
        message = _compare(label, exp, act)
        if message is not None:
            mismatches.append(message)

    if not desc.is_composite_key:
        id_col = schema.column(desc.id_property.name)
        found = id_col.generated if id_col is not None else None
        if found is not desc.generation:
            mismatches.append(
                f"identity column mismatch: expected {_generation_name(desc.generation)}, "
                f"found {_generation_name(found)}"
            )

    if schema.ttl != desc.options.ttl and (schema.ttl.enabled or desc.options.ttl.enabled):
        logger.warning(
            "table %s: TTL mismatch: entity declares %s, table has %s",
            desc.table_name,
            desc.options.ttl,
            schema.ttl,
        )

    return mismatches


def _generation_name(gen: Generation | None) -> str:
    return "none" if gen is None else gen.value


def assert_table_schema(
    desc: EntityDescriptor[Any],
    schema: TableSchema | Mapping[str, Any],
    *,
    timestamp_precision: int = DEFAULT_TIMESTAMP_PRECISION,
) -> None:
    mismatches = validate_table_schema(desc, schema, timestamp_precision=timestamp_precision)
    if mismatches:
        raise SchemaMismatchError(table_name=desc.table_name, mismatches=mismatches)


def describe_table(desc: EntityDescriptor[Any], *, client: StoreClient) -> TableSchema | None:
    try:
        raw = client.get_table_schema(table_name=desc.table_name)
    except StoreError as err:
        logger.error("get table schema: table: %s", desc.table_name)
        logger.error(err.message)
        raise map_store_error(err) from err
    if raw is None:
        return None
    return TableSchema.from_mapping(raw)


def run_table_request(
    statement: str,
    *,
    client: StoreClient,
    limits: TableLimits | None = None,
    timeout_ms: int = 0,
    config: NosqlDbConfig | None = None,
) -> TableState:
    config = config or NosqlDbConfig()
    logger.debug("DDL: %s", statement)
    try:
        result = client.table_request(
            statement=statement,
            limits=limits,
            timeout_ms=timeout_ms or config.table_request_timeout_ms,
            poll_interval_ms=config.table_request_poll_interval_ms,
        )
    except StoreError as err:
        logger.error("DDL: %s", statement)
        logger.error(err.message)
        raise map_store_error(err) from err

    state = result.get("state")
    try:
        return TableState(str(state).upper())
    except ValueError as err:
        raise ValidationError(f"unexpected table state: {state!r}") from err


def ensure_table(
    desc: EntityDescriptor[Any],
    *,
    client: StoreClient,
    config: NosqlDbConfig | None = None,
) -> bool:
    """Creates the entity's table when missing; validates it when present.

    Returns True when the table is usable (ACTIVE after creation, or already
    present with a matching schema).
    """
    config = config or NosqlDbConfig()
    schema = describe_table(desc, client=client)
    if schema is not None:
        assert_table_schema(desc, schema, timestamp_precision=config.timestamp_precision)
        return True

    statement = build_create_table_statement(desc, timestamp_precision=config.timestamp_precision)
    state = run_table_request(
        statement,
        client=client,
        limits=table_limits(desc.options),
        timeout_ms=desc.options.timeout_ms,
        config=config,
    )
    return state is TableState.ACTIVE


def drop_table(
    desc: EntityDescriptor[Any],
    *,
    client: StoreClient,
    config: NosqlDbConfig | None = None,
) -> bool:
    state = run_table_request(
        build_drop_table_statement(desc),
        client=client,
        timeout_ms=desc.options.timeout_ms,
        config=config,
    )
    return state in {TableState.DROPPED, TableState.DROPPING}
