from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ValidationError
from .geo import Circle


class CriteriaType(Enum):
    ALL = "ALL"
    IS_EQUAL = "IS_EQUAL"
    NEGATING_SIMPLE_PROPERTY = "NEGATING_SIMPLE_PROPERTY"
    BEFORE = "BEFORE"
    AFTER = "AFTER"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_EQUAL = "LESS_THAN_EQUAL"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_EQUAL = "GREATER_THAN_EQUAL"
    IN = "IN"
    NOT_IN = "NOT_IN"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    CONTAINING = "CONTAINING"
    NOT_CONTAINING = "NOT_CONTAINING"
    REGEX = "REGEX"
    LIKE = "LIKE"
    NOT_LIKE = "NOT_LIKE"
    BETWEEN = "BETWEEN"
    EXISTS = "EXISTS"
    NEAR = "NEAR"
    WITHIN = "WITHIN"
    TRUE = "TRUE"
    FALSE = "FALSE"
    AND = "AND"
    OR = "OR"

    @property
    def sql_keyword(self) -> str:
        return _SPECS[self][0]

    @property
    def arity(self) -> int:
        return _SPECS[self][1]

    @property
    def is_function(self) -> bool:
        return _SPECS[self][2]

    @property
    def is_binary(self) -> bool:
        return self.arity == 1 and self not in {
            CriteriaType.IN,
            CriteriaType.NOT_IN,
            CriteriaType.NEAR,
            CriteriaType.WITHIN,
        }

    @property
    def is_logical(self) -> bool:
        return self in {CriteriaType.AND, CriteriaType.OR}


# keyword, number of bound values, rendered as a function call
_SPECS: dict[CriteriaType, tuple[str, int, bool]] = {
    CriteriaType.ALL: ("", 0, False),
    CriteriaType.IS_EQUAL: ("=", 1, False),
    CriteriaType.NEGATING_SIMPLE_PROPERTY: ("!=", 1, False),
    CriteriaType.BEFORE: ("<", 1, False),
    CriteriaType.AFTER: (">", 1, False),
    CriteriaType.LESS_THAN: ("<", 1, False),
    CriteriaType.LESS_THAN_EQUAL: ("<=", 1, False),
    CriteriaType.GREATER_THAN: (">", 1, False),
    CriteriaType.GREATER_THAN_EQUAL: (">=", 1, False),
    CriteriaType.IN: ("IN", 1, False),
    CriteriaType.NOT_IN: ("IN", 1, False),
    CriteriaType.IS_NULL: ("= null", 0, False),
    CriteriaType.IS_NOT_NULL: ("!= null", 0, False),
    CriteriaType.STARTS_WITH: ("starts_with", 1, True),
    CriteriaType.ENDS_WITH: ("ends_with", 1, True),
    CriteriaType.CONTAINING: ("contains", 1, True),
    CriteriaType.NOT_CONTAINING: ("NOT contains", 1, True),
    CriteriaType.REGEX: ("regex_like", 1, True),
    CriteriaType.LIKE: ("regex_like", 1, True),
    CriteriaType.NOT_LIKE: ("NOT regex_like", 1, True),
    CriteriaType.BETWEEN: ("BETWEEN", 2, False),
    CriteriaType.EXISTS: ("EXISTS", 0, False),
    CriteriaType.NEAR: ("geo_near", 1, True),
    CriteriaType.WITHIN: ("geo_inside", 1, True),
    CriteriaType.TRUE: ("= true", 0, False),
    CriteriaType.FALSE: ("= false", 0, False),
    CriteriaType.AND: ("AND", 0, False),
    CriteriaType.OR: ("OR", 0, False),
}

_SUBJECTLESS = frozenset(
    {
        CriteriaType.ALL,
        CriteriaType.TRUE,
        CriteriaType.FALSE,
        CriteriaType.IS_NULL,
        CriteriaType.IS_NOT_NULL,
        CriteriaType.EXISTS,
    }
)


@dataclass(frozen=True)
class Criteria:
    type: CriteriaType
    subject: str | None = None
    values: tuple[Any, ...] = ()
    ignore_case: bool = False
    children: tuple[Criteria, ...] = ()

    def __post_init__(self) -> None:
        if self.type.is_logical:
            if len(self.children) != 2:
                raise ValidationError(f"{self.type.value} criteria must have exactly two children")
            if self.values or self.subject is not None:
                raise ValidationError(f"{self.type.value} criteria cannot carry a subject or values")
            return

        if self.children:
            raise ValidationError(f"{self.type.value} criteria cannot have children")
        if len(self.values) != self.type.arity:
            raise ValidationError(
                f"{self.type.value} criteria requires {self.type.arity} value(s) (got {len(self.values)})"
            )
        if not self.subject and self.type not in _SUBJECTLESS:
            raise ValidationError(f"{self.type.value} criteria requires a subject")
        if self.type is CriteriaType.NEAR and not isinstance(self.values[0], Circle):
            raise ValidationError(
                f"Unsupported type for Near criteria: {type(self.values[0]).__name__}. Use Circle instead."
            )

    @staticmethod
    def all() -> Criteria:
        return Criteria(type=CriteriaType.ALL)

    @staticmethod
    def eq(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.IS_EQUAL, subject, (value,), ignore_case)

    @staticmethod
    def ne(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.NEGATING_SIMPLE_PROPERTY, subject, (value,), ignore_case)

    @staticmethod
    def lt(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.LESS_THAN, subject, (value,), ignore_case)

    @staticmethod
    def lte(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.LESS_THAN_EQUAL, subject, (value,), ignore_case)

    @staticmethod
    def gt(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.GREATER_THAN, subject, (value,), ignore_case)

    @staticmethod
    def gte(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.GREATER_THAN_EQUAL, subject, (value,), ignore_case)

    @staticmethod
    def before(subject: str, value: Any) -> Criteria:
        return Criteria(CriteriaType.BEFORE, subject, (value,))

    @staticmethod
    def after(subject: str, value: Any) -> Criteria:
        return Criteria(CriteriaType.AFTER, subject, (value,))

    @staticmethod
    def between(subject: str, low: Any, high: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.BETWEEN, subject, (low, high), ignore_case)

    @staticmethod
    def in_(subject: str, values: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.IN, subject, (values,), ignore_case)

    @staticmethod
    def not_in(subject: str, values: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.NOT_IN, subject, (values,), ignore_case)

    @staticmethod
    def is_null(subject: str) -> Criteria:
        return Criteria(CriteriaType.IS_NULL, subject)

    @staticmethod
    def is_not_null(subject: str) -> Criteria:
        return Criteria(CriteriaType.IS_NOT_NULL, subject)

    @staticmethod
    def starts_with(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.STARTS_WITH, subject, (value,), ignore_case)

    @staticmethod
    def ends_with(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.ENDS_WITH, subject, (value,), ignore_case)

    @staticmethod
    def contains(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.CONTAINING, subject, (value,), ignore_case)

    @staticmethod
    def not_contains(subject: str, value: Any, *, ignore_case: bool = False) -> Criteria:
        return Criteria(CriteriaType.NOT_CONTAINING, subject, (value,), ignore_case)

    @staticmethod
    def regex(subject: str, pattern: str) -> Criteria:
        return Criteria(CriteriaType.REGEX, subject, (pattern,))

    @staticmethod
    def like(subject: str, pattern: str) -> Criteria:
        return Criteria(CriteriaType.LIKE, subject, (pattern,))

    @staticmethod
    def not_like(subject: str, pattern: str) -> Criteria:
        return Criteria(CriteriaType.NOT_LIKE, subject, (pattern,))

    @staticmethod
    def exists(subject: str) -> Criteria:
        return Criteria(CriteriaType.EXISTS, subject)

    @staticmethod
    def near(subject: str, circle: Circle) -> Criteria:
        return Criteria(CriteriaType.NEAR, subject, (circle,))

    @staticmethod
    def within(subject: str, shape: Any) -> Criteria:
        return Criteria(CriteriaType.WITHIN, subject, (shape,))

    @staticmethod
    def is_true(subject: str) -> Criteria:
        return Criteria(CriteriaType.TRUE, subject)

    @staticmethod
    def is_false(subject: str) -> Criteria:
        return Criteria(CriteriaType.FALSE, subject)

    @staticmethod
    def and_(left: Criteria, right: Criteria) -> Criteria:
        return Criteria(CriteriaType.AND, children=(left, right))

    @staticmethod
    def or_(left: Criteria, right: Criteria) -> Criteria:
        return Criteria(CriteriaType.OR, children=(left, right))

    @staticmethod
    def all_of(criteria: Iterable[Criteria]) -> Criteria:
        return _fold(CriteriaType.AND, criteria)

    @staticmethod
    def any_of(criteria: Iterable[Criteria]) -> Criteria:
        return _fold(CriteriaType.OR, criteria)


def _fold(op: CriteriaType, criteria: Iterable[Criteria]) -> Criteria:
    items = list(criteria)
    if not items:
        return Criteria.all()
    result = items[0]
    for item in items[1:]:
        result = Criteria(op, children=(result, item))
    return result
