from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from enum import Enum
from numbers import Integral
from typing import Any, Protocol, TypeAlias, TypeVar

from .errors import MappingError, ValidationError
from .query import CriteriaQuery, Page, Pageable, QueryMode, Slice, Sort

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ResultShape(Enum):
    COLLECTION = "COLLECTION"
    PAGE = "PAGE"
    SLICE = "SLICE"
    VALUE = "VALUE"


class QueryOperations(Protocol):
    def find(
        self,
        query: CriteriaQuery,
        entity_type: type[Any],
        *,
        projection: type[Any] | None = None,
    ) -> list[Any]: ...

    def count_rows(self, query: CriteriaQuery, entity_type: type[Any]) -> list[Mapping[str, Any]]: ...

    def delete_query(self, query: CriteriaQuery, entity_type: type[Any]) -> list[Any]: ...


Execution: TypeAlias = Callable[[QueryOperations, CriteriaQuery, type[Any]], Any]


def select_execution(
    query: CriteriaQuery,
    shape: ResultShape,
    *,
    pageable: Pageable | None = None,
    projection: type[Any] | None = None,
) -> Execution:
    """Picks how a query is run and how its rows are shaped.

    Checked in order: delete, slice, count, collection, page, exists.
    """
    if query.is_delete:
        return _run_delete
    if shape is ResultShape.SLICE:
        return lambda ops, q, tp: execute_sliced(ops, q, tp, _require_pageable(pageable), projection=projection)
    if query.is_count:
        return _run_count
    if shape is ResultShape.COLLECTION:
        return lambda ops, q, tp: ops.find(q, tp, projection=projection)
    if shape is ResultShape.PAGE:
        return lambda ops, q, tp: execute_paged(ops, q, tp, _require_pageable(pageable), projection=projection)
    if query.is_exists:
        return _run_exists
    raise ValidationError(f"no execution for {query.mode.value} query returning {shape.value}")


def _require_pageable(pageable: Pageable | None) -> Pageable:
    if pageable is None:
        raise ValidationError("a pageable is required for paged and sliced results")
    return pageable


def _run_delete(ops: QueryOperations, query: CriteriaQuery, entity_type: type[Any]) -> list[Any]:
    return ops.delete_query(query, entity_type)


def _run_count(ops: QueryOperations, query: CriteriaQuery, entity_type: type[Any]) -> int:
    return count_value(ops.count_rows(query, entity_type))


def _run_exists(ops: QueryOperations, query: CriteriaQuery, entity_type: type[Any]) -> bool:
    return execute_exists(ops, query, entity_type)


def count_value(rows: Sequence[Mapping[str, Any]]) -> int:
    if len(rows) != 1:
        raise MappingError(f"Unexpected count query result: expected one row (got {len(rows)})")
    row = rows[0]
    if len(row) != 1:
        raise MappingError("Unexpected count query result.")
    value = next(iter(row.values()))
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise MappingError(f"Unexpected count query result: {value!r}")
    return int(value)


def execute_exists(ops: QueryOperations, query: CriteriaQuery, entity_type: type[Any]) -> bool:
    probe = query if query.is_exists else replace(query, mode=QueryMode.EXISTS)
    return len(ops.find(probe, entity_type)) > 0


def execute_sliced(
    ops: QueryOperations,
    query: CriteriaQuery,
    entity_type: type[T],
    pageable: Pageable,
    *,
    projection: type[Any] | None = None,
) -> Slice[Any]:
    size = pageable.size
    # one extra row tells whether a next slice exists
    probe = query.with_pageable(pageable).with_limit(size + 1)
    rows = ops.find(probe, entity_type, projection=projection)
    has_next = len(rows) > size
    return Slice(content=rows[:size] if has_next else rows, pageable=pageable, has_next=has_next)


def execute_paged(
    ops: QueryOperations,
    query: CriteriaQuery,
    entity_type: type[T],
    pageable: Pageable,
    *,
    projection: type[Any] | None = None,
) -> Page[Any]:
    """Runs the page query, then an independent count query for the total.

    The two queries are not isolated from each other: rows written between
    them can make the total disagree with the page content.
    """
    content = ops.find(query.with_pageable(pageable), entity_type, projection=projection)

    counter = replace(
        query,
        mode=QueryMode.COUNT,
        sort=Sort(),
        limit=None,
        pageable=None,
        distinct=False,
        projection=None,
    )
    total = count_value(ops.count_rows(counter, entity_type))
    if query.limit is not None and query.limit > 0:
        total = min(total, query.limit)
    logger.debug("page %d of %s: %d row(s), total %d", pageable.page, entity_type.__name__, len(content), total)
    return Page(content=content, pageable=pageable, total=total)


def execute(
    ops: QueryOperations,
    query: CriteriaQuery,
    entity_type: type[Any],
    shape: ResultShape = ResultShape.COLLECTION,
    *,
    pageable: Pageable | None = None,
    projection: type[Any] | None = None,
) -> Any:
    run = select_execution(query, shape, pageable=pageable, projection=projection)
    return run(ops, query, entity_type)
