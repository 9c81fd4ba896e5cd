from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import pytest

from nosqldata_py import (
    ApiUsageError,
    MappingError,
    NosqlTemplate,
    Page,
    Pageable,
    QueryMode,
    Slice,
    StringQuery,
    TransientStoreError,
    ValidationError,
    nosql_id,
    nosql_key,
    nosql_table,
)
from nosqldata_py.errors import StoreError
from nosqldata_py.testkit import ANY, FakeStoreClient, InMemoryStoreClient


@dataclass(frozen=True)
class Customer:
    id: str
    first_name: str = ""
    last_name: str = ""
    age: int = 0


@dataclass(frozen=True)
class Counter:
    id: int | None = nosql_id(generated=True)
    label: str = ""


@dataclass(frozen=True)
class VisitKey:
    site: str
    day: int = nosql_key(shard_key=False)


@dataclass(frozen=True)
class Visit:
    id: VisitKey
    note: str = ""


@nosql_table(auto_create_table=False)
@dataclass(frozen=True)
class Manual:
    id: str


class LastNameHandler:
    """Answers the customer queries the derived methods below compile to."""

    def __init__(self) -> None:
        self.store: InMemoryStoreClient | None = None

    def __call__(self, statement: str, variables: Mapping[str, Any]) -> list[dict[str, Any]]:
        assert self.store is not None
        rows = self.store.rows("Customer")
        if "$p_last_name" in variables:
            rows = [r for r in rows if r["kv_json_"]["last_name"] == variables["$p_last_name"]]
        if "count(*)" in statement:
            return [{"Column_1": len(rows)}]
        offset = variables.get("$kv_offset_", 0)
        limit = variables.get("$kv_limit_")
        rows = rows[offset:]
        return rows[:limit] if limit else rows


@pytest.fixture
def handler() -> LastNameHandler:
    return LastNameHandler()


@pytest.fixture
def store(handler: LastNameHandler) -> InMemoryStoreClient:
    client = InMemoryStoreClient(query_handler=handler, page_size=2)
    handler.store = client
    return client


@pytest.fixture
def template(store: InMemoryStoreClient) -> NosqlTemplate:
    return NosqlTemplate(store)


def _seed(template: NosqlTemplate) -> None:
    template.create_table_if_not_exists(Customer)
    template.insert_all(
        [
            Customer(id="c1", first_name="Ann", last_name="Lee", age=31),
            Customer(id="c2", first_name="Bo", last_name="Lee", age=45),
            Customer(id="c3", first_name="Cy", last_name="Moss", age=28),
            Customer(id="c4", first_name="Di", last_name="Lee", age=52),
        ]
    )


def test_create_table_then_validate_existing(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    assert template.create_table_if_not_exists(Customer) is True
    assert store.has_table("Customer")
    assert store.statements == ["CREATE TABLE IF NOT EXISTS Customer (id STRING, kv_json_ JSON, PRIMARY KEY(id))"]

    assert template.create_table_if_not_exists(Customer) is True
    assert len(store.statements) == 1


def test_insert_and_find_by_id(template: NosqlTemplate) -> None:
    _seed(template)

    assert template.find_by_id(Customer, "c2") == Customer(id="c2", first_name="Bo", last_name="Lee", age=45)
    assert template.find_by_id(Customer, "nope") is None
    assert template.exists_by_id(Customer, "c3")
    assert [c.id for c in template.find_all_by_id(Customer, ["c4", "x", "c1"])] == ["c4", "c1"]


def test_put_creates_a_missing_table(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    template.insert(Customer(id="c1"))
    assert store.has_table("Customer")
    assert store.rows("Customer") == [
        {"id": "c1", "kv_json_": {"first_name": "", "last_name": "", "age": 0}},
    ]


def test_put_without_auto_create_fails(template: NosqlTemplate) -> None:
    with pytest.raises(ApiUsageError):
        template.insert(Manual(id="m1"))


def test_generated_ids_and_update_by_statement(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    template.create_table_if_not_exists(Counter)

    first = template.insert(Counter(label="a"))
    assert first == Counter(id=1, label="a")

    updated = template.save(Counter(id=1, label="b"))
    assert updated.label == "b"
    assert template.find_by_id(Counter, 1) == Counter(id=1, label="b")
    assert store.statements[-1].startswith("DECLARE $id Long; $json JSON; UPDATE Counter t")

    second = template.save(Counter(label="c"))
    assert second.id is not None and second.id != 1


def test_update_requires_an_existing_row(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    _seed(template)
    template.update(Customer(id="c1", first_name="Ann", last_name="Lee", age=32))
    template.update(Customer(id="zz", first_name="Ghost"))

    assert template.find_by_id(Customer, "c1").age == 32  # type: ignore[union-attr]
    assert template.find_by_id(Customer, "zz") is None
    with pytest.raises(ValidationError, match="update requires an id"):
        template.update(Counter(label="x"))


def test_save_upserts_entities_with_assigned_ids(template: NosqlTemplate) -> None:
    _seed(template)
    template.save(Customer(id="c9", first_name="Ed"))
    template.save(Customer(id="c1", first_name="Ann", last_name="Park"))

    assert template.find_by_id(Customer, "c9") is not None
    assert template.find_by_id(Customer, "c1").last_name == "Park"  # type: ignore[union-attr]


def test_insert_with_generated_id_requires_a_value() -> None:
    client = FakeStoreClient()
    client.expect("put", {"table_name": "Counter", "row": {"kv_json_": {"label": "a"}}, "return_row": True})

    with pytest.raises(MappingError, match="expected a generated id value"):
        NosqlTemplate(client).insert(Counter(label="a"))


def test_find_all_count_and_pages(template: NosqlTemplate) -> None:
    _seed(template)

    assert [c.id for c in template.find_all(Customer)] == ["c1", "c2", "c3", "c4"]
    assert template.count(Customer) == 4

    page = template.find_all_page(Customer, Pageable.of(1, 3))
    assert isinstance(page, Page)
    assert [c.id for c in page] == ["c4"]
    assert page.total == 4
    assert page.total_pages == 2
    assert not page.has_next


def test_deletes(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    _seed(template)

    assert template.delete_by_id(Customer, "c1") is True
    assert template.delete_by_id(Customer, "c1") is False
    template.delete_all_by_id(Customer, ["c2", "c3"])
    assert [r["id"] for r in store.rows("Customer")] == ["c4"]

    template.delete_all(Customer)
    assert template.count(Customer) == 0


def test_delete_in_shard(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    template.create_table_if_not_exists(Visit)
    for day in (1, 2, 3):
        template.insert(Visit(id=VisitKey(site="home", day=day), note=f"n{day}"))
    template.insert(Visit(id=VisitKey(site="shop", day=1)))

    assert template.delete_in_shard(Visit, [VisitKey("home", 1), VisitKey("home", 3)]) == 2
    assert template.delete_in_shard(Visit, []) == 0
    assert sorted((r["site"], r["day"]) for r in store.rows("Visit")) == [("home", 2), ("shop", 1)]
    assert template.find_by_id(Visit, VisitKey("home", 2)) == Visit(id=VisitKey("home", 2), note="n2")

    with pytest.raises(ValidationError, match="same shard key"):
        template.delete_in_shard(Visit, [VisitKey("home", 2), VisitKey("shop", 1)])


def test_derived_queries(template: NosqlTemplate) -> None:
    _seed(template)

    found = template.execute_derived(Customer, "find_by_last_name", "Lee")
    assert [c.id for c in found] == ["c1", "c2", "c4"]
    assert template.execute_derived(Customer, "count_by_last_name", "Lee") == 3
    assert template.execute_derived(Customer, "exists_by_last_name", "Moss") is True
    assert template.execute_derived(Customer, "exists_by_last_name", "Nope") is False


def test_derived_pages_and_slices(template: NosqlTemplate) -> None:
    _seed(template)

    page = template.execute_derived(Customer, "find_by_last_name", "Lee", pageable=Pageable.of(0, 2))
    assert isinstance(page, Page)
    assert [c.id for c in page] == ["c1", "c2"]
    assert page.total == 3
    assert page.has_next

    chunk = template.execute_derived(Customer, "find_by_last_name", "Lee", pageable=Pageable.of(1, 2), as_slice=True)
    assert isinstance(chunk, Slice)
    assert [c.id for c in chunk] == ["c4"]
    assert not chunk.has_next


def test_derived_delete_returns_deleted_entities(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    _seed(template)

    deleted = template.execute_derived(Customer, "delete_by_last_name", "Lee")

    assert [c.id for c in deleted] == ["c1", "c2", "c4"]
    assert [r["id"] for r in store.rows("Customer")] == ["c3"]


def test_string_queries(template: NosqlTemplate) -> None:
    _seed(template)
    text = "declare $p_last_name String; select * from Customer as t where t.kv_json_.last_name = $p_last_name"

    found = template.execute_string_query(Customer, StringQuery(text=text, param_names=("$p_last_name",)), "Moss")
    assert [c.id for c in found] == ["c3"]

    counted = StringQuery(
        text=text.replace("select *", "select count(*)"),
        param_names=("$p_last_name",),
        mode=QueryMode.COUNT,
    )
    assert template.execute_string_query(Customer, counted, "Lee") == 3


def test_drop_table_clears_prepared_statements(template: NosqlTemplate, store: InMemoryStoreClient) -> None:
    _seed(template)
    template.find_all(Customer)
    assert len(template.cache) == 1

    assert template.drop_table_if_exists(Customer) is True
    assert not store.has_table("Customer")
    assert len(template.cache) == 0


def test_stale_statements_are_prepared_again() -> None:
    client = FakeStoreClient()
    client.expect("prepare", {"statement": "SELECT * FROM T t"})
    client.expect("query", error=StoreError(code="PrepareStale", message="stale"))
    client.expect("prepare", {"statement": "SELECT * FROM T t"})
    client.expect(
        "query",
        {"prepared": ANY, "consistency": "EVENTUAL", "continuation_key": None},
        response={"rows": [{"a": 1}], "continuation_key": None},
    )

    assert NosqlTemplate(client).run_query("SELECT * FROM T t") == [{"a": 1}]
    client.assert_no_pending()


def test_query_failures_are_mapped_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeStoreClient()
    client.expect("prepare")
    client.expect("query", error=StoreError(code="Throttling", message="slow down"))
    template = NosqlTemplate(client)

    with pytest.raises(TransientStoreError, match="slow down"):
        template.run_query("SELECT 1")

    assert "query: SELECT 1" in caplog.text
    assert "slow down" in caplog.text
    assert "SELECT 1" not in template.cache


def test_put_failures_are_mapped() -> None:
    client = FakeStoreClient()
    client.expect("put", error=StoreError(code="Throttling", message="slow down"))

    with pytest.raises(TransientStoreError):
        NosqlTemplate(client).insert(Customer(id="c1"))
    client.assert_no_pending()
