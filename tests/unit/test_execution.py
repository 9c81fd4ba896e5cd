from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from nosqldata_py import Criteria, CriteriaQuery, MappingError, Pageable, QueryMode, Sort, ValidationError
from nosqldata_py.execution import ResultShape, count_value, execute, select_execution


class RecordingOps:
    def __init__(self, rows: list[Any], count: int = 0) -> None:
        self.rows = rows
        self.count = count
        self.found: list[CriteriaQuery] = []
        self.counted: list[CriteriaQuery] = []
        self.deleted: list[CriteriaQuery] = []

    def find(self, query: CriteriaQuery, entity_type: type[Any], *, projection: type[Any] | None = None) -> list[Any]:
        self.found.append(query)
        limit = query.effective_limit
        return list(self.rows[:limit] if limit else self.rows)

    def count_rows(self, query: CriteriaQuery, entity_type: type[Any]) -> list[Mapping[str, Any]]:
        self.counted.append(query)
        return [{"Column_1": self.count}]

    def delete_query(self, query: CriteriaQuery, entity_type: type[Any]) -> list[Any]:
        self.deleted.append(query)
        return list(self.rows)


class Item:
    pass


QUERY = CriteriaQuery(criteria=Criteria.eq("name", "x"))


def test_delete_wins_over_every_shape() -> None:
    ops = RecordingOps(["a", "b"])
    query = QUERY.with_mode(QueryMode.DELETE)
    assert execute(ops, query, Item, ResultShape.PAGE, pageable=Pageable.of(0, 1)) == ["a", "b"]
    assert ops.deleted == [query]
    assert ops.found == []


def test_count_and_exists_return_values() -> None:
    ops = RecordingOps(["a"], count=7)
    assert execute(ops, QUERY.with_mode(QueryMode.COUNT), Item, ResultShape.VALUE) == 7
    assert execute(ops, QUERY.with_mode(QueryMode.EXISTS), Item, ResultShape.VALUE) is True
    assert execute(RecordingOps([]), QUERY.with_mode(QueryMode.EXISTS), Item, ResultShape.VALUE) is False


def test_exists_returning_a_collection_runs_as_select() -> None:
    ops = RecordingOps(["a"])
    assert execute(ops, QUERY.with_mode(QueryMode.EXISTS), Item) == ["a"]


def test_select_returning_a_value_has_no_execution() -> None:
    with pytest.raises(ValidationError, match="no execution for SELECT"):
        select_execution(QUERY, ResultShape.VALUE)


def test_paged_results_need_a_pageable() -> None:
    with pytest.raises(ValidationError, match="a pageable is required"):
        execute(RecordingOps([]), QUERY, Item, ResultShape.PAGE)


def test_sliced_fetches_one_extra_row() -> None:
    ops = RecordingOps(["a", "b", "c", "d", "e"])
    pageable = Pageable.of(0, 2)

    result = execute(ops, QUERY, Item, ResultShape.SLICE, pageable=pageable)

    assert list(result) == ["a", "b"]
    assert result.has_next
    assert ops.found[0].effective_limit == 3

    last = execute(RecordingOps(["a"]), QUERY, Item, ResultShape.SLICE, pageable=pageable)
    assert list(last) == ["a"]
    assert not last.has_next


def test_paged_runs_an_independent_count() -> None:
    ops = RecordingOps(["a", "b", "c"], count=11)
    sorted_query = QUERY.with_sort(Sort.by("name")).with_distinct(True)

    page = execute(ops, sorted_query, Item, ResultShape.PAGE, pageable=Pageable.of(1, 3))

    assert list(page) == ["a", "b", "c"]
    assert page.total == 11
    (counter,) = ops.counted
    assert counter.mode is QueryMode.COUNT
    assert counter.sort == Sort()
    assert counter.pageable is None
    assert not counter.distinct
    assert counter.criteria == QUERY.criteria


def test_paged_total_is_capped_by_the_query_limit() -> None:
    ops = RecordingOps(["a"], count=11)
    page = execute(ops, QUERY.with_limit(4), Item, ResultShape.PAGE, pageable=Pageable.of(0, 2))
    assert page.total == 4


@pytest.mark.parametrize(
    "rows",
    [
        [],
        [{"a": 1}, {"a": 2}],
        [{"a": 1, "b": 2}],
        [{"a": "1"}],
        [{"a": True}],
    ],
)
def test_count_value_rejects_unexpected_rows(rows: list[dict[str, Any]]) -> None:
    with pytest.raises(MappingError, match="Unexpected count query result"):
        count_value(rows)


def test_count_value() -> None:
    assert count_value([{"Column_1": 3}]) == 3
