from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .config import NosqlDbConfig, load_config, parse_config_document
from .criteria import Criteria, CriteriaType
from .errors import (
    ApiUsageError,
    ConfigurationError,
    EntityDefinitionError,
    ErrorKind,
    MappingError,
    NosqlDataError,
    PermanentStoreError,
    PermissionDeniedError,
    QueryTimeoutError,
    SchemaMismatchError,
    SizeLimitError,
    StoreError,
    TransientStoreError,
    ValidationError,
    error_kind,
)
from .geo import Circle, Point, Polygon
from .model import (
    CapacityMode,
    Consistency,
    Durability,
    EntityDescriptor,
    TableOptions,
    Ttl,
    TtlUnit,
    nosql_field,
    nosql_id,
    nosql_key,
    nosql_table,
)
from .query import CompiledQuery, CriteriaQuery, Order, Page, Pageable, QueryMode, Slice, Sort, StringQuery
from .types import BigInt, Float32, Instant, Int32, NativeValue, TypeCode

if TYPE_CHECKING:
    from .cache import PreparedQueryCache
    from .converter import NosqlConverter
    from .derived import DerivedQuery, parse_derived
    from .execution import ResultShape
    from .mapping import MappingContext
    from .schema import (
        assert_table_schema,
        build_create_table_statement,
        describe_table,
        ensure_table,
        validate_table_schema,
    )
    from .store import PreparedStatement, StoreClient, TableLimits, TableState
    from .store_errors import map_store_error
    from .template import NosqlTemplate


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "NosqlTemplate":
        from .template import NosqlTemplate

        return NosqlTemplate
    if name == "NosqlConverter":
        from .converter import NosqlConverter

        return NosqlConverter
    if name == "MappingContext":
        from .mapping import MappingContext

        return MappingContext
    if name == "PreparedQueryCache":
        from .cache import PreparedQueryCache

        return PreparedQueryCache
    if name in {"DerivedQuery", "parse_derived"}:
        from . import derived

        return getattr(derived, name)
    if name == "ResultShape":
        from .execution import ResultShape

        return ResultShape
    if name in {
        "assert_table_schema",
        "build_create_table_statement",
        "describe_table",
        "ensure_table",
        "validate_table_schema",
    }:
        from . import schema

        return getattr(schema, name)
    if name in {"PreparedStatement", "StoreClient", "TableLimits", "TableState"}:
        from . import store

        return getattr(store, name)
    if name == "map_store_error":
        from .store_errors import map_store_error

        return map_store_error
    raise AttributeError(name)


__all__ = [
    "ApiUsageError",
    "assert_table_schema",
    "BigInt",
    "build_create_table_statement",
    "CapacityMode",
    "Circle",
    "CompiledQuery",
    "ConfigurationError",
    "Consistency",
    "Criteria",
    "CriteriaQuery",
    "CriteriaType",
    "DerivedQuery",
    "describe_table",
    "Durability",
    "ensure_table",
    "EntityDefinitionError",
    "EntityDescriptor",
    "error_kind",
    "ErrorKind",
    "Float32",
    "Instant",
    "Int32",
    "load_config",
    "map_store_error",
    "MappingContext",
    "MappingError",
    "NativeValue",
    "nosql_field",
    "nosql_id",
    "nosql_key",
    "nosql_table",
    "NosqlConverter",
    "NosqlDataError",
    "NosqlDbConfig",
    "NosqlTemplate",
    "Order",
    "Page",
    "Pageable",
    "parse_config_document",
    "parse_derived",
    "PermanentStoreError",
    "PermissionDeniedError",
    "Point",
    "Polygon",
    "PreparedQueryCache",
    "PreparedStatement",
    "QueryMode",
    "QueryTimeoutError",
    "ResultShape",
    "SchemaMismatchError",
    "SizeLimitError",
    "Slice",
    "Sort",
    "StoreClient",
    "StoreError",
    "StringQuery",
    "TableLimits",
    "TableOptions",
    "TableState",
    "TransientStoreError",
    "Ttl",
    "TtlUnit",
    "TypeCode",
    "validate_table_schema",
    "ValidationError",
    "__repo_version__",
    "__version__",
]
