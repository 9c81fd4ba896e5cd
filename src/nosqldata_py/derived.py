from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, is_dataclass
from typing import Any

from .criteria import Criteria, CriteriaType
from .errors import ValidationError
from .mapping import MappingContext
from .model import EntityDescriptor
from .query import CriteriaQuery, Order, QueryMode, Sort
from .types import unwrap_optional

# Longer keyword sequences first; the first full match wins.
_OPERATORS: tuple[tuple[tuple[str, ...], CriteriaType], ...] = (
    (("is", "not", "null"), CriteriaType.IS_NOT_NULL),
    (("not", "null"), CriteriaType.IS_NOT_NULL),
    (("is", "null"), CriteriaType.IS_NULL),
    (("null",), CriteriaType.IS_NULL),
    (("is", "not", "in"), CriteriaType.NOT_IN),
    (("not", "in"), CriteriaType.NOT_IN),
    (("is", "in"), CriteriaType.IN),
    (("in",), CriteriaType.IN),
    (("is", "not", "like"), CriteriaType.NOT_LIKE),
    (("not", "like"), CriteriaType.NOT_LIKE),
    (("is", "like"), CriteriaType.LIKE),
    (("like",), CriteriaType.LIKE),
    (("not", "containing"), CriteriaType.NOT_CONTAINING),
    (("not", "contains"), CriteriaType.NOT_CONTAINING),
    (("is", "containing"), CriteriaType.CONTAINING),
    (("containing",), CriteriaType.CONTAINING),
    (("contains",), CriteriaType.CONTAINING),
    (("is", "less", "than", "equal"), CriteriaType.LESS_THAN_EQUAL),
    (("less", "than", "equal"), CriteriaType.LESS_THAN_EQUAL),
    (("is", "less", "than"), CriteriaType.LESS_THAN),
    (("less", "than"), CriteriaType.LESS_THAN),
    (("is", "greater", "than", "equal"), CriteriaType.GREATER_THAN_EQUAL),
    (("greater", "than", "equal"), CriteriaType.GREATER_THAN_EQUAL),
    (("is", "greater", "than"), CriteriaType.GREATER_THAN),
    (("greater", "than"), CriteriaType.GREATER_THAN),
    (("is", "before"), CriteriaType.BEFORE),
    (("before",), CriteriaType.BEFORE),
    (("is", "after"), CriteriaType.AFTER),
    (("after",), CriteriaType.AFTER),
    (("is", "between"), CriteriaType.BETWEEN),
    (("between",), CriteriaType.BETWEEN),
    (("is", "starting", "with"), CriteriaType.STARTS_WITH),
    (("starting", "with"), CriteriaType.STARTS_WITH),
    (("starts", "with"), CriteriaType.STARTS_WITH),
    (("is", "ending", "with"), CriteriaType.ENDS_WITH),
    (("ending", "with"), CriteriaType.ENDS_WITH),
    (("ends", "with"), CriteriaType.ENDS_WITH),
    (("matches", "regex"), CriteriaType.REGEX),
    (("matches",), CriteriaType.REGEX),
    (("regex",), CriteriaType.REGEX),
    (("exists",), CriteriaType.EXISTS),
    (("is", "near"), CriteriaType.NEAR),
    (("near",), CriteriaType.NEAR),
    (("is", "within"), CriteriaType.WITHIN),
    (("within",), CriteriaType.WITHIN),
    (("is", "true"), CriteriaType.TRUE),
    (("true",), CriteriaType.TRUE),
    (("is", "false"), CriteriaType.FALSE),
    (("false",), CriteriaType.FALSE),
    (("is", "not"), CriteriaType.NEGATING_SIMPLE_PROPERTY),
    (("not",), CriteriaType.NEGATING_SIMPLE_PROPERTY),
    (("is", "equal"), CriteriaType.IS_EQUAL),
    (("equals",), CriteriaType.IS_EQUAL),
    (("is",), CriteriaType.IS_EQUAL),
)

_IGNORE_CASE = (("ignore", "case"), ("ignoring", "case"))

_SUBJECTS: dict[str, QueryMode] = {
    "find": QueryMode.SELECT,
    "read": QueryMode.SELECT,
    "get": QueryMode.SELECT,
    "query": QueryMode.SELECT,
    "search": QueryMode.SELECT,
    "count": QueryMode.COUNT,
    "exists": QueryMode.EXISTS,
    "delete": QueryMode.DELETE,
    "remove": QueryMode.DELETE,
}


@dataclass(frozen=True)
class Part:
    subject: str
    type: CriteriaType
    ignore_case: bool = False

    @property
    def arity(self) -> int:
        return self.type.arity


@dataclass(frozen=True)
class DerivedQuery:
    """A parsed query method name.

    ``branches`` holds OR-ed groups of AND-ed parts. Binding positional
    arguments to the parts yields a ``CriteriaQuery``.
    """

    method_name: str
    mode: QueryMode
    branches: tuple[tuple[Part, ...], ...]
    sort: Sort
    distinct: bool = False
    max_results: int | None = None

    @property
    def arity(self) -> int:
        return sum(p.arity for branch in self.branches for p in branch)

    def create_query(self, args: Sequence[Any]) -> CriteriaQuery:
        if len(args) != self.arity:
            raise ValidationError(f"{self.method_name}: expected {self.arity} argument(s) (got {len(args)})")

        it = iter(args)
        criteria: Criteria | None = None
        for branch in self.branches:
            current: Criteria | None = None
            for part in branch:
                values = tuple(next(it) for _ in range(part.arity))
                leaf = Criteria(part.type, part.subject, values, part.ignore_case)
                current = leaf if current is None else Criteria.and_(current, leaf)
            if current is not None:
                criteria = current if criteria is None else Criteria.or_(criteria, current)

        return CriteriaQuery(
            criteria=criteria,
            sort=self.sort,
            limit=self.max_results,
            distinct=self.distinct,
            mode=self.mode,
        )


def parse_derived(method_name: str, entity: EntityDescriptor[Any], context: MappingContext) -> DerivedQuery:
    return _Parser(method_name, entity, context).parse()


class _Parser:
    def __init__(self, method_name: str, entity: EntityDescriptor[Any], context: MappingContext) -> None:
        self._name = method_name
        self._entity = entity
        self._context = context
        self._tokens = [t for t in method_name.lower().split("_") if t]
        self._pos = 0

    def parse(self) -> DerivedQuery:
        mode, distinct, max_results = self._subject()

        branches: list[tuple[Part, ...]] = []
        and_parts = [self._part()]
        while not self._at_end() and not self._peek("order", "by"):
            if self._take("and"):
                and_parts.append(self._part())
            elif self._take("or"):
                branches.append(tuple(and_parts))
                and_parts = [self._part()]
            else:
                raise self._error("expected _and_, _or_ or _order_by_")
        branches.append(tuple(and_parts))

        sort = Sort()
        if self._take("order", "by"):
            sort = self._orders()

        return DerivedQuery(
            method_name=self._name,
            mode=mode,
            branches=tuple(branches),
            sort=sort,
            distinct=distinct,
            max_results=max_results,
        )

    def _subject(self) -> tuple[QueryMode, bool, int | None]:
        if self._at_end() or self._tokens[0] not in _SUBJECTS:
            raise ValidationError(f"{self._name}: unsupported query method prefix")
        mode = _SUBJECTS[self._tokens[0]]
        self._pos = 1

        distinct = self._take("distinct")
        max_results: int | None = None
        if self._take("first") or self._take("top"):
            max_results = 1
            if not self._at_end() and self._tokens[self._pos].isdigit():
                max_results = int(self._tokens[self._pos])
                self._pos += 1
                if max_results < 1:
                    raise self._error("result limit must be >= 1")
        self._take("all")

        if not self._take("by"):
            raise self._error("expected _by_")
        return mode, distinct, max_results

    def _part(self) -> Part:
        for path, end in self._paths(self._pos):
            saved = self._pos
            self._pos = end
            kind = self._operator()
            ignore_case = self._ignore_case()
            if self._at_clause_end():
                return Part(subject=path, type=kind, ignore_case=ignore_case)
            self._pos = saved
        raise self._error("no property matches")

    def _operator(self) -> CriteriaType:
        for words, kind in _OPERATORS:
            if self._peek(*words):
                self._pos += len(words)
                return kind
        return CriteriaType.IS_EQUAL

    def _ignore_case(self) -> bool:
        for words in _IGNORE_CASE:
            if self._take(*words):
                return True
        return False

    def _orders(self) -> Sort:
        orders: list[Order] = []
        while not self._at_end():
            for path, end in self._paths(self._pos):
                if end < len(self._tokens) and self._tokens[end] in {"asc", "desc"}:
                    orders.append(Order(property=path, ascending=self._tokens[end] == "asc"))
                    self._pos = end + 1
                    break
            else:
                raise self._error("expected <property>_asc or <property>_desc")
        if not orders:
            raise self._error("_order_by_ requires at least one property")
        return Sort(orders=tuple(orders))

    def _paths(self, start: int) -> list[tuple[str, int]]:
        found: list[tuple[str, int]] = []
        self._collect(self._entity.properties, start, "", found)
        id_prop = self._entity.id_property
        key_type = self._entity.composite_key_type
        if key_type is not None:
            for end in range(len(self._tokens), start, -1):
                name = "_".join(self._tokens[start:end])
                if self._entity.is_key_column(name):
                    found.append((f"{id_prop.name}.{name}", end))
        found.sort(key=_path_end, reverse=True)
        return found

    def _collect(self, props: Any, start: int, prefix: str, found: list[tuple[str, int]]) -> None:
        for end in range(len(self._tokens), start, -1):
            name = "_".join(self._tokens[start:end])
            prop = props.get(name)
            if prop is None or not prop.is_writable:
                continue
            path = f"{prefix}{name}"
            found.append((path, end))
            tp = unwrap_optional(prop.python_type)
            if isinstance(tp, type) and is_dataclass(tp) and not prop.is_composite_key:
                self._collect(self._context.properties(tp), end, path + ".", found)

    def _at_clause_end(self) -> bool:
        return self._at_end() or self._peek("and") or self._peek("or") or self._peek("order", "by")

    def _at_end(self) -> bool:
        return self._pos >= len(self._tokens)

    def _peek(self, *words: str) -> bool:
        return tuple(self._tokens[self._pos : self._pos + len(words)]) == words

    def _take(self, *words: str) -> bool:
        if self._peek(*words):
            self._pos += len(words)
            return True
        return False

    def _error(self, message: str) -> ValidationError:
        rest = "_".join(self._tokens[self._pos :])
        return ValidationError(f"{self._name}: {message} at {rest!r}")


def _path_end(item: tuple[str, int]) -> int:
    return item[1]
