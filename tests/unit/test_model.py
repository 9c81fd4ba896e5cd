from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import pytest

from nosqldata_py import (
    CapacityMode,
    EntityDefinitionError,
    Ttl,
    TtlUnit,
    nosql_field,
    nosql_id,
    nosql_key,
    nosql_table,
)
from nosqldata_py.mapping import MappingContext, default_discriminator
from nosqldata_py.model import (
    DOCUMENT_COLUMN,
    EntityDescriptor,
    Generation,
    composite_key_columns,
    describe_properties,
)
from nosqldata_py.types import TypeCode


@dataclass(frozen=True)
class ImplicitKey:
    zone: str
    city: str
    year: int = nosql_key(shard_key=False)
    month: int = nosql_key(shard_key=False)


@dataclass(frozen=True)
class ExplicitKey:
    b: str = nosql_key(shard_key=True, order=1)
    a: str = nosql_key(shard_key=True, order=0)
    c: int = nosql_key(shard_key=False, order=2)


@nosql_table(table_name="readings", capacity_mode=CapacityMode.ON_DEMAND, storage_gb=5, ttl=Ttl(7, TtlUnit.DAYS))
@dataclass(frozen=True)
class Reading:
    id: ImplicitKey
    value: float = 0.0


@dataclass(frozen=True)
class Account:
    account_id: str = nosql_id()
    owner: str = ""
    cached: str = nosql_field(ignore=True, default="")


@dataclass(frozen=True)
class Ticket:
    title: str
    id: int | None = nosql_id(generated=True)


@dataclass(frozen=True)
class Session:
    token: str | None = nosql_id(generated=True)


def test_implicit_composite_key_order_puts_shard_keys_first_alphabetically() -> None:
    cols = composite_key_columns(ImplicitKey)
    assert [c.name for c in cols] == ["city", "zone", "month", "year"]
    assert [c.shard_key for c in cols] == [True, True, False, False]


def test_explicit_composite_key_order() -> None:
    cols = composite_key_columns(ExplicitKey)
    assert [c.name for c in cols] == ["a", "b", "c"]


def test_composite_key_without_shard_key_is_rejected() -> None:
    @dataclass
    class NoShard:
        a: str = nosql_key(shard_key=False)

    with pytest.raises(EntityDefinitionError, match="at least one shard key"):
        composite_key_columns(NoShard)


def test_composite_key_with_partial_order_is_rejected() -> None:
    @dataclass
    class Partial:
        a: str = nosql_key(order=0)
        b: str = nosql_key()

    with pytest.raises(EntityDefinitionError, match="all or none"):
        composite_key_columns(Partial)


def test_composite_key_with_duplicate_order_is_rejected() -> None:
    @dataclass
    class Dup:
        a: str = nosql_key(order=0)
        b: str = nosql_key(order=0)

    with pytest.raises(EntityDefinitionError, match="unique"):
        composite_key_columns(Dup)


def test_composite_key_shard_order_must_precede_non_shard() -> None:
    @dataclass
    class Inverted:
        a: str = nosql_key(shard_key=True, order=5)
        b: str = nosql_key(shard_key=False, order=1)

    with pytest.raises(EntityDefinitionError, match="lower than non-shard"):
        composite_key_columns(Inverted)


def test_composite_key_rejects_reserved_and_non_simple_fields() -> None:
    @dataclass
    class Reserved:
        kv_json_: str

    @dataclass
    class Floaty:
        a: float

    with pytest.raises(EntityDefinitionError, match="reserved"):
        composite_key_columns(Reserved)
    with pytest.raises(EntityDefinitionError, match="simple type"):
        composite_key_columns(Floaty)


def test_table_entity_cannot_be_a_composite_key() -> None:
    @nosql_table
    @dataclass
    class Both:
        a: str

    with pytest.raises(EntityDefinitionError, match="both a table entity and a composite key"):
        composite_key_columns(Both)


def test_entity_descriptor_for_composite_key_entity() -> None:
    desc = EntityDescriptor.from_dataclass(Reading)
    assert desc.table_name == "readings"
    assert desc.is_composite_key
    assert desc.composite_key_type is ImplicitKey
    assert [c.name for c in desc.shard_keys] == ["city", "zone"]
    assert [c.name for c in desc.non_shard_keys] == ["month", "year"]
    assert desc.document_column == DOCUMENT_COLUMN
    assert desc.options.capacity_mode is CapacityMode.ON_DEMAND
    assert desc.options.ttl == Ttl(7, TtlUnit.DAYS)
    assert desc.is_key_column("zone")
    assert not desc.is_key_column("value")


def test_entity_descriptor_uses_explicit_id_and_ignores_fields() -> None:
    desc = EntityDescriptor.from_dataclass(Account)
    assert desc.id_property.name == "account_id"
    assert desc.table_name == "Account"
    assert not desc.properties["cached"].is_writable
    assert desc.key_columns[0].type_code is TypeCode.STRING


def test_generation_follows_id_type() -> None:
    assert EntityDescriptor.from_dataclass(Ticket).generation is Generation.IDENTITY
    assert EntityDescriptor.from_dataclass(Session).generation is Generation.UUID
    assert EntityDescriptor.from_dataclass(Account).generation is None


def test_entity_without_id_is_rejected() -> None:
    @dataclass
    class NoId:
        name: str

    with pytest.raises(EntityDefinitionError, match="must define an id field"):
        EntityDescriptor.from_dataclass(NoId)


def test_entity_with_two_ids_is_rejected() -> None:
    @dataclass
    class TwoIds:
        a: str = nosql_id()
        b: str = nosql_id()

    with pytest.raises(EntityDefinitionError, match="at most one id field"):
        EntityDescriptor.from_dataclass(TwoIds)


def test_non_simple_id_is_rejected() -> None:
    @dataclass
    class FloatId:
        id: float

    with pytest.raises(EntityDefinitionError, match="simple type"):
        EntityDescriptor.from_dataclass(FloatId)


def test_auto_generated_timestamp_id_is_rejected() -> None:
    @dataclass
    class When:
        id: datetime | None = nosql_id(generated=True)

    with pytest.raises(EntityDefinitionError, match="string or a number"):
        EntityDescriptor.from_dataclass(When)


def test_key_fields_only_allowed_on_composite_key_class() -> None:
    @dataclass
    class Misplaced:
        id: str
        part: str = nosql_key()

    with pytest.raises(EntityDefinitionError, match="only allowed on a composite key class"):
        EntityDescriptor.from_dataclass(Misplaced)


def test_ttl_parse_and_str() -> None:
    assert Ttl.parse("12 hours") == Ttl(12, TtlUnit.HOURS)
    assert str(Ttl(3, TtlUnit.DAYS)) == "3 DAYS"
    assert not Ttl.parse(None).enabled
    with pytest.raises(EntityDefinitionError):
        Ttl.parse("soon")


def test_nosql_field_validates_arguments() -> None:
    with pytest.raises(ValueError, match="generated requires id"):
        nosql_field(generated=True)
    with pytest.raises(ValueError, match="both default and default_factory"):
        nosql_field(default=1, default_factory=list)


def test_describe_properties_reads_field_metadata() -> None:
    @dataclass
    class Tagged:
        id: str
        tags: list[str] = field(default_factory=list)

    props = describe_properties(Tagged)
    assert props["tags"].type_code is TypeCode.COLLECTION
    assert props["tags"].has_default
    assert not props["id"].has_default


def test_mapping_context_memoizes_descriptors() -> None:
    ctx = MappingContext()
    assert ctx.entity(Account) is ctx.entity(Account)
    assert ctx.properties(Account) is ctx.properties(Account)


def test_mapping_context_discriminator_registry() -> None:
    ctx = MappingContext()

    @dataclass
    class Cat:
        name: str

    assert ctx.discriminator(Cat) == default_discriminator(Cat)
    assert ctx.resolve_discriminator(default_discriminator(Cat)) is Cat

    @dataclass
    class Other:
        name: str

    ctx.register_type(Other, "pet")
    assert ctx.resolve_discriminator("pet") is Other
    with pytest.raises(EntityDefinitionError, match="already registered"):
        ctx.register_type(Cat, "pet")
