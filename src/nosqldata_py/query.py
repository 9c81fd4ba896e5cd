from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence, Set
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, cast, Generic, TypeVar

from .converter import NosqlConverter
from .criteria import Criteria, CriteriaType
from .errors import ValidationError
from .geo import Circle
from .mapping import MappingContext
from .model import DOCUMENT_COLUMN, EntityDescriptor, PropertyDescriptor
from .types import TypeCode, unwrap_optional

T = TypeVar("T")

LIMIT_PARAM = "$kv_limit_"
OFFSET_PARAM = "$kv_offset_"

_MAX_PARAM_TRIES = 1_000_000
_TIMESTAMP_CODES = frozenset({TypeCode.DATE, TypeCode.TIMESTAMP, TypeCode.INSTANT})


@dataclass(frozen=True)
class Order:
    property: str
    ascending: bool = True
    ignore_case: bool = False

    @staticmethod
    def asc(prop: str) -> Order:
        return Order(property=prop, ascending=True)

    @staticmethod
    def desc(prop: str) -> Order:
        return Order(property=prop, ascending=False)


@dataclass(frozen=True)
class Sort:
    orders: tuple[Order, ...] = ()

    @staticmethod
    def by(*props: str, ascending: bool = True) -> Sort:
        return Sort(orders=tuple(Order(property=p, ascending=ascending) for p in props))

    @staticmethod
    def unsorted() -> Sort:
        return Sort()

    @property
    def is_sorted(self) -> bool:
        return bool(self.orders)

    def and_(self, other: Sort) -> Sort:
        return Sort(orders=self.orders + other.orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders)


@dataclass(frozen=True)
class Pageable:
    page: int
    size: int
    sort: Sort = field(default_factory=Sort)

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValidationError("page index must be >= 0")
        if self.size < 1:
            raise ValidationError("page size must be >= 1")

    @staticmethod
    def of(page: int, size: int, sort: Sort | None = None) -> Pageable:
        return Pageable(page=page, size=size, sort=sort or Sort())

    @property
    def offset(self) -> int:
        return self.page * self.size

    def next(self) -> Pageable:
        return replace(self, page=self.page + 1)

    def previous_or_first(self) -> Pageable:
        return replace(self, page=max(self.page - 1, 0))

    def first(self) -> Pageable:
        return replace(self, page=0)


@dataclass(frozen=True)
class Page(Generic[T]):
    content: list[T]
    pageable: Pageable
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.pageable.size)

    @property
    def number(self) -> int:
        return self.pageable.page

    @property
    def has_next(self) -> bool:
        return self.number + 1 < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.number > 0

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Slice(Generic[T]):
    content: list[T]
    pageable: Pageable
    has_next: bool

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)


class QueryMode(Enum):
    SELECT = "SELECT"
    COUNT = "COUNT"
    DELETE = "DELETE"
    EXISTS = "EXISTS"


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CriteriaQuery:
    criteria: Criteria | None = None
    sort: Sort = field(default_factory=Sort)
    limit: int | None = None
    pageable: Pageable | None = None
    distinct: bool = False
    mode: QueryMode = QueryMode.SELECT
    projection: type[Any] | None = None

    def with_sort(self, sort: Sort | None) -> CriteriaQuery:
        if sort is None or not sort.is_sorted:
            return self
        return replace(self, sort=sort.and_(self.sort))

    def with_pageable(self, pageable: Pageable) -> CriteriaQuery:
        return replace(self, pageable=pageable).with_sort(pageable.sort)

    def with_limit(self, limit: int | None) -> CriteriaQuery:
        return replace(self, limit=limit)

    def with_distinct(self, distinct: bool = True) -> CriteriaQuery:
        return replace(self, distinct=distinct)

    def with_projection(self, projection: type[Any] | None) -> CriteriaQuery:
        return replace(self, projection=projection)

    def with_mode(self, mode: QueryMode) -> CriteriaQuery:
        return replace(self, mode=mode)

    @property
    def is_count(self) -> bool:
        return self.mode is QueryMode.COUNT

    @property
    def is_delete(self) -> bool:
        return self.mode is QueryMode.DELETE

    @property
    def is_exists(self) -> bool:
        return self.mode is QueryMode.EXISTS

    @property
    def effective_limit(self) -> int | None:
        if self.limit is not None and self.limit > 0:
            return self.limit
        if self.pageable is not None:
            return self.pageable.size
        if self.is_exists:
            return 1
        return None

    def compile(self, entity: EntityDescriptor[Any], context: MappingContext) -> CompiledQuery:
        return _CriteriaCompiler(entity, context).compile(self)


@dataclass(frozen=True)
class StringQuery:
    """Literal query text with named bind variables.

    ``param_names`` lists the variable each positional argument binds to, in
    declaration order. A ``None`` entry is an unnamed parameter.
    """

    text: str
    param_names: tuple[str | None, ...] = ()
    mode: QueryMode = QueryMode.SELECT

    def compile(self, args: Sequence[Any] = ()) -> CompiledQuery:
        if len(args) != len(self.param_names):
            raise ValidationError(
                f"query expects {len(self.param_names)} argument(s) (got {len(args)})"
            )
        params: dict[str, Any] = {}
        for name, value in zip(self.param_names, args, strict=True):
            if not name:
                raise ValidationError("Not explicitly named parameters are not supported with native queries.")
            params[name] = value
        return CompiledQuery(sql=self.text, params=params)


def _is_collection(value: Any) -> bool:
    if isinstance(value, (str, bytes, bytearray, Mapping)):
        return False
    return isinstance(value, (Sequence, Set))


class _CriteriaCompiler:
    def __init__(self, entity: EntityDescriptor[Any], context: MappingContext) -> None:
        self._entity = entity
        self._context = context
        self._params: dict[str, Any] = {}
        self._hints: dict[str, Any] = {}

    def compile(self, query: CriteriaQuery) -> CompiledQuery:
        select = "count(*)" if query.is_count else self._projection(query.projection)
        sql = "select " + ("distinct " if query.distinct else "") + select + f" from {self._entity.table_name} as t"

        where = self._build(query.criteria)
        if where.strip():
            sql += " where " + where

        if query.sort.is_sorted:
            sql += " ORDER BY " + ",".join(self._order(o) for o in query.sort)

        limit = query.effective_limit
        if limit is not None:
            sql += f" LIMIT {LIMIT_PARAM}"
            self._params[LIMIT_PARAM] = limit
        if query.pageable is not None:
            sql += f" OFFSET {OFFSET_PARAM}"
            self._params[OFFSET_PARAM] = query.pageable.offset

        if self._params:
            decls = "; ".join(
                f"{name} {NosqlConverter.to_sql_type(value, self._hints.get(name))}"
                for name, value in self._params.items()
            )
            sql = f"declare {decls}; " + sql

        return CompiledQuery(sql=sql, params=dict(self._params))

    # field references

    def _resolve(self, path: str) -> tuple[str, PropertyDescriptor | None]:
        entity = self._entity
        head, _, rest = path.partition(".")
        id_prop = entity.id_property

        if head == id_prop.name:
            if not entity.is_composite_key:
                if rest:
                    raise ValidationError(f"simple id {head!r} has no nested fields: {path}")
                return f"t.{head}", id_prop
            if not rest or "." in rest or not entity.is_key_column(rest):
                raise ValidationError(f"unknown composite key field: {path}")
            return f"t.{rest}", self._key_component(rest)

        if not rest and entity.is_key_column(head):
            return f"t.{head}", self._key_component(head)

        prop = entity.properties.get(head)
        if prop is None or not prop.is_writable:
            raise ValidationError(f"unknown property: {head} (in {entity.entity_type.__name__})")
        return f"t.{DOCUMENT_COLUMN}.{path}", self._leaf(prop, rest)

    def _key_component(self, name: str) -> PropertyDescriptor | None:
        key_type = self._entity.composite_key_type
        if key_type is None:
            return None
        return self._context.properties(key_type).get(name)

    def _leaf(self, prop: PropertyDescriptor, rest: str) -> PropertyDescriptor | None:
        current: PropertyDescriptor | None = prop
        for segment in rest.split(".") if rest else ():
            if current is None or current.type_code is not TypeCode.POJO:
                return None
            tp = unwrap_optional(current.python_type)
            if not isinstance(tp, type):
                return None
            current = self._context.properties(tp).get(segment)
        return current

    def _field(self, crt: Criteria) -> str:
        ref, _ = self._resolve(self._subject(crt))
        return ref

    def _field_with_cast(self, crt: Criteria) -> str:
        ref, prop = self._resolve(self._subject(crt))
        if ref.startswith(f"t.{DOCUMENT_COLUMN}.") and prop is not None and prop.type_code in _TIMESTAMP_CODES:
            return f"cast({ref} as Timestamp)"
        return ref

    def _hint(self, crt: Criteria) -> Any:
        _, prop = self._resolve(self._subject(crt))
        return None if prop is None else prop.python_type

    def _order(self, order: Order) -> str:
        ref, _ = self._resolve(order.property)
        if order.ignore_case:
            ref = f"lower({ref})"
        return ref + (" ASC" if order.ascending else " DESC")

    @staticmethod
    def _subject(crt: Criteria) -> str:
        if not crt.subject:
            raise ValidationError(f"{crt.type.value} criteria requires a subject")
        return crt.subject

    # parameters

    def _param(self, subject: str, value: Any, hint: Any = None) -> str:
        root = "$p_" + subject.replace(".", "_")
        name = root
        i = 0
        while name in self._params:
            if i > _MAX_PARAM_TRIES:
                raise ValidationError("Too many tries to find a valid sql parameter name.")
            i += 1
            name = f"{root}{i}"
        self._params[name] = value
        if hint is not None:
            self._hints[name] = hint
        return name

    # criteria

    def _build(self, crt: Criteria | None) -> str:
        if crt is None:
            return ""

        kind = crt.type
        match kind:
            case CriteriaType.ALL:
                return ""
            case CriteriaType.TRUE | CriteriaType.FALSE | CriteriaType.IS_NULL | CriteriaType.IS_NOT_NULL:
                if crt.subject:
                    return f"{self._field(crt)} {kind.sql_keyword}"
                return _SUBJECTLESS_SQL[kind]
            case CriteriaType.EXISTS:
                if crt.subject:
                    return f"EXISTS {self._field(crt)}"
                return " EXISTS "
            case CriteriaType.AND | CriteriaType.OR:
                bound = dict(self._params)
                left = self._build(crt.children[0])
                right = self._build(crt.children[1])
                # an empty side matches every row
                if not left.strip() or not right.strip():
                    if kind is CriteriaType.OR:
                        self._params = bound
                        return ""
                    return right if not left.strip() else left
                return f" ({left} {kind.sql_keyword} {right}) "
            case CriteriaType.IN | CriteriaType.NOT_IN:
                return self._in(crt)
            case CriteriaType.BETWEEN:
                return self._between(crt)
            case CriteriaType.NEAR:
                return self._near(crt)
            case CriteriaType.WITHIN:
                subject = self._subject(crt)
                shape = self._param(subject, crt.values[0])
                return f"{kind.sql_keyword}({self._field_with_cast(crt)}, {shape})"
            case _ if kind.is_binary:
                return self._binary(crt)
        raise ValidationError(f"Unsupported Criteria type: {kind.value}")

    def _binary(self, crt: Criteria) -> str:
        subject = self._field_with_cast(crt)
        param = self._param(self._subject(crt), crt.values[0], self._hint(crt))
        if crt.ignore_case:
            subject = f"lower({subject})"
            param = f"lower({param})"
        if crt.type.is_function:
            return f"{crt.type.sql_keyword}({subject}, {param})"
        return f"{subject} {crt.type.sql_keyword} {param}"

    def _in(self, crt: Criteria) -> str:
        values = crt.values[0]
        if not _is_collection(values):
            raise ValidationError("IN keyword requires Collection type in parameters")

        param = self._param(self._subject(crt), list(values)) + "[]"
        ref = self._field_with_cast(crt)
        if crt.ignore_case:
            ref = f"lower({ref})"
            param = f"seq_transform({param}, lower($))"

        result = f"{ref} {crt.type.sql_keyword} ({param})"
        if crt.type is CriteriaType.NOT_IN:
            result = f"NOT ({result})"
        return result

    def _between(self, crt: Criteria) -> str:
        subject = self._subject(crt)
        hint = self._hint(crt)
        low = self._param(subject, crt.values[0], hint)
        high = self._param(subject, crt.values[1], hint)
        ref = self._field_with_cast(crt)
        if crt.ignore_case:
            ref = f"lower({ref})"
            low = f"lower({low})"
            high = f"lower({high})"
        return f"({ref} >= {low} AND {ref} <= {high})"

    def _near(self, crt: Criteria) -> str:
        circle = cast(Circle, crt.values[0])
        subject = self._subject(crt)
        shape = self._param(subject + "_shape", circle.center)
        dist = self._param(subject + "_dist", float(circle.radius))
        return f"{crt.type.sql_keyword}({self._field_with_cast(crt)}, {shape}, {dist})"

    # projection

    def _projection(self, projection: type[Any] | None) -> str:
        if projection is None or projection is self._entity.entity_type:
            return "*"

        entity = self._entity
        keys: list[str] = []
        non_keys: list[str] = []
        for prop in self._context.properties(projection).values():
            if not prop.is_writable:
                continue
            if prop.name == entity.id_property.name:
                keys.extend(f"t.{c.name}" for c in entity.key_columns)
            elif entity.is_key_column(prop.name):
                keys.append(f"t.{prop.name}")
            elif prop.name in entity.properties:
                non_keys.append(f"'{prop.name}': t.{DOCUMENT_COLUMN}.{prop.name}")

        if not keys and not non_keys:
            raise ValidationError(f"There are no accessible fields in returned type: {projection.__name__}")

        parts = list(keys)
        if non_keys:
            parts.append("{" + ", ".join(non_keys) + "} as " + DOCUMENT_COLUMN)
        return ", ".join(parts)


_SUBJECTLESS_SQL: dict[CriteriaType, str] = {
    CriteriaType.TRUE: "true",
    CriteriaType.FALSE: "false",
    CriteriaType.IS_NULL: " is null",
    CriteriaType.IS_NOT_NULL: " is not null",
}
