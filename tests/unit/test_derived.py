from __future__ import annotations

from dataclasses import dataclass

import pytest

from nosqldata_py import CriteriaType, QueryMode, ValidationError, nosql_key
from nosqldata_py.derived import DerivedQuery, Part, parse_derived
from nosqldata_py.mapping import MappingContext


@dataclass(frozen=True)
class Address:
    city: str
    zip_code: str = ""


@dataclass(frozen=True)
class Customer:
    id: str
    first_name: str = ""
    last_name: str = ""
    age: int = 0
    active: bool = False
    address: Address | None = None


@dataclass(frozen=True)
class VisitKey:
    site: str
    day: int = nosql_key(shard_key=False)


@dataclass(frozen=True)
class Visit:
    id: VisitKey
    note: str = ""


@pytest.fixture
def context() -> MappingContext:
    return MappingContext()


def _parse(name: str, context: MappingContext, entity: type = Customer) -> DerivedQuery:
    return parse_derived(name, context.entity(entity), context)


def test_ignore_case_and_equality_clause(context: MappingContext) -> None:
    derived = _parse("find_by_first_name_ignore_case_and_last_name", context)

    assert derived.mode is QueryMode.SELECT
    assert derived.branches == (
        (
            Part(subject="first_name", type=CriteriaType.IS_EQUAL, ignore_case=True),
            Part(subject="last_name", type=CriteriaType.IS_EQUAL),
        ),
    )

    compiled = derived.create_query(["Ann", "Lee"]).compile(context.entity(Customer), context)
    assert compiled.sql == (
        "declare $p_first_name String; $p_last_name String; "
        "select * from Customer as t where  (lower(t.kv_json_.first_name) = lower($p_first_name) "
        "AND t.kv_json_.last_name = $p_last_name) "
    )


def test_subject_prefixes_select_the_mode(context: MappingContext) -> None:
    assert _parse("count_by_age", context).mode is QueryMode.COUNT
    assert _parse("exists_by_age", context).mode is QueryMode.EXISTS
    assert _parse("delete_by_age", context).mode is QueryMode.DELETE
    assert _parse("remove_by_age", context).mode is QueryMode.DELETE
    assert _parse("get_by_age", context).mode is QueryMode.SELECT


@pytest.mark.parametrize(
    ("suffix", "kind"),
    [
        ("age", CriteriaType.IS_EQUAL),
        ("age_is", CriteriaType.IS_EQUAL),
        ("age_equals", CriteriaType.IS_EQUAL),
        ("age_not", CriteriaType.NEGATING_SIMPLE_PROPERTY),
        ("age_less_than", CriteriaType.LESS_THAN),
        ("age_less_than_equal", CriteriaType.LESS_THAN_EQUAL),
        ("age_greater_than", CriteriaType.GREATER_THAN),
        ("age_greater_than_equal", CriteriaType.GREATER_THAN_EQUAL),
        ("age_before", CriteriaType.BEFORE),
        ("age_after", CriteriaType.AFTER),
        ("age_between", CriteriaType.BETWEEN),
        ("age_in", CriteriaType.IN),
        ("age_not_in", CriteriaType.NOT_IN),
        ("last_name_is_null", CriteriaType.IS_NULL),
        ("last_name_is_not_null", CriteriaType.IS_NOT_NULL),
        ("last_name_starting_with", CriteriaType.STARTS_WITH),
        ("last_name_ending_with", CriteriaType.ENDS_WITH),
        ("last_name_containing", CriteriaType.CONTAINING),
        ("last_name_not_containing", CriteriaType.NOT_CONTAINING),
        ("last_name_like", CriteriaType.LIKE),
        ("last_name_not_like", CriteriaType.NOT_LIKE),
        ("last_name_regex", CriteriaType.REGEX),
        ("address_exists", CriteriaType.EXISTS),
        ("address_near", CriteriaType.NEAR),
        ("address_within", CriteriaType.WITHIN),
        ("active_true", CriteriaType.TRUE),
        ("active_false", CriteriaType.FALSE),
    ],
)
def test_operator_suffixes(context: MappingContext, suffix: str, kind: CriteriaType) -> None:
    derived = _parse(f"find_by_{suffix}", context)
    (branch,) = derived.branches
    (part,) = branch
    assert part.type is kind


def test_or_creates_branches_and_arity_counts_values(context: MappingContext) -> None:
    derived = _parse("find_by_age_between_or_last_name_and_active_true", context)
    assert [len(b) for b in derived.branches] == [1, 2]
    assert derived.arity == 3

    query = derived.create_query([1, 5, "Lee"])
    assert query.criteria is not None
    assert query.criteria.type is CriteriaType.OR


def test_argument_count_is_checked(context: MappingContext) -> None:
    derived = _parse("find_by_age", context)
    with pytest.raises(ValidationError, match="expected 1 argument"):
        derived.create_query([])


def test_limit_distinct_and_ordering(context: MappingContext) -> None:
    derived = _parse("find_distinct_top_3_by_age_greater_than_order_by_last_name_desc_age_asc", context)
    assert derived.distinct
    assert derived.max_results == 3
    assert [(o.property, o.ascending) for o in derived.sort] == [("last_name", False), ("age", True)]

    query = derived.create_query([30])
    assert query.limit == 3
    assert query.distinct

    assert _parse("find_first_by_age", context).max_results == 1


def test_nested_properties_use_dotted_paths(context: MappingContext) -> None:
    derived = _parse("find_by_address_zip_code_starting_with", context)
    assert derived.branches[0][0].subject == "address.zip_code"


def test_composite_key_columns_map_to_id_paths(context: MappingContext) -> None:
    derived = _parse("find_by_site_and_day_greater_than", context, Visit)
    assert [p.subject for p in derived.branches[0]] == ["id.site", "id.day"]

    compiled = derived.create_query(["home", 3]).compile(context.entity(Visit), context)
    assert compiled.sql.endswith("where  (t.site = $p_id_site AND t.day > $p_id_day) ")


@pytest.mark.parametrize(
    ("name", "match"),
    [
        ("frobnicate_by_age", "unsupported query method prefix"),
        ("find_age", "expected _by_"),
        ("find_by_nickname", "no property matches"),
        ("find_by_age_order_by_nickname_asc", "expected <property>_asc"),
        ("find_top_0_by_age", "result limit must be >= 1"),
    ],
)
def test_invalid_names_are_rejected(context: MappingContext, name: str, match: str) -> None:
    with pytest.raises(ValidationError, match=match):
        _parse(name, context)
