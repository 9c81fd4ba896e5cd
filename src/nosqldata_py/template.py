from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import is_dataclass
from typing import Any, cast, TypeAlias, TypeVar

from .cache import PreparedQueryCache
from .config import NosqlDbConfig
from .converter import NosqlConverter
from .derived import parse_derived
from .errors import MappingError, StoreError, ValidationError
from .execution import ResultShape, count_value, execute, execute_exists
from .mapping import MappingContext
from .model import DOCUMENT_COLUMN, Consistency, EntityDescriptor
from .query import CompiledQuery, CriteriaQuery, Page, Pageable, QueryMode, Sort, StringQuery
from .schema import (
    build_count_statement,
    build_create_table_statement,
    build_delete_all_statement,
    build_select_all_statement,
    build_update_statement,
    drop_table,
    ensure_table,
    run_table_request,
    table_limits,
)
from .store import PreparedHandle, StoreClient, TableState
from .store_errors import is_stale_statement, is_table_not_found, map_store_error

T = TypeVar("T")

logger = logging.getLogger(__name__)

AnyQuery: TypeAlias = CriteriaQuery | CompiledQuery


class NosqlTemplate:
    def __init__(
        self,
        client: StoreClient,
        *,
        config: NosqlDbConfig | None = None,
        context: MappingContext | None = None,
        cache: PreparedQueryCache | None = None,
    ) -> None:
        self._client = client
        self._config = config or NosqlDbConfig()
        self._context = context or MappingContext()
        self._converter = NosqlConverter(self._context)
        self._cache = cache or PreparedQueryCache(
            self._config.query_cache_capacity,
            self._config.query_cache_lifetime_ms,
        )

    @property
    def client(self) -> StoreClient:
        return self._client

    @property
    def config(self) -> NosqlDbConfig:
        return self._config

    @property
    def context(self) -> MappingContext:
        return self._context

    @property
    def converter(self) -> NosqlConverter:
        return self._converter

    @property
    def cache(self) -> PreparedQueryCache:
        return self._cache

    def entity(self, entity_type: type[T]) -> EntityDescriptor[T]:
        return self._context.entity(entity_type)

    # tables

    def create_table_if_not_exists(self, entity_type: type[Any]) -> bool:
        return ensure_table(self.entity(entity_type), client=self._client, config=self._config)

    def drop_table_if_exists(self, entity_type: type[Any]) -> bool:
        dropped = drop_table(self.entity(entity_type), client=self._client, config=self._config)
        self._cache.clear()
        return dropped

    def run_table_request(self, statement: str) -> TableState:
        return run_table_request(statement, client=self._client, config=self._config)

    # writes

    def insert(self, obj: T) -> T:
        desc = self._entity_of(obj)
        generated = desc.auto_generated
        row = self._converter.to_row(obj, skip_id=generated, entity=desc)
        result = self._put(desc, row, if_present=False, return_row=generated)
        if not generated:
            return obj

        value = result.get("generated_value")
        if value is None:
            raise MappingError(f"{desc.table_name}: expected a generated id value (got none)")
        return self._converter.set_id(obj, value, entity=desc)

    def insert_all(self, objs: Iterable[T]) -> list[T]:
        return [self.insert(obj) for obj in objs]

    def update(self, obj: T) -> T:
        desc = self._entity_of(obj)
        if getattr(obj, desc.id_property.name) is None:
            raise ValidationError(f"{desc.table_name}: update requires an id value")

        row = self._converter.to_row(obj, entity=desc)
        if desc.auto_generated:
            # generated ids cannot be written by a put; rewrite the document in place
            id_column = desc.key_columns[0].name
            params = {"$id": row[id_column], "$json": row[DOCUMENT_COLUMN]}
            self._run(desc, build_update_statement(desc), params)
        else:
            self._put(desc, row, if_present=True, return_row=False)
        return obj

    def save(self, obj: T) -> T:
        desc = self._entity_of(obj)
        if not desc.auto_generated or getattr(obj, desc.id_property.name) is None:
            return self.insert(obj)
        return self.update(obj)

    def _put(
        self,
        desc: EntityDescriptor[Any],
        row: dict[str, Any],
        *,
        if_present: bool,
        return_row: bool,
    ) -> Mapping[str, Any]:
        request: dict[str, Any] = {
            "table_name": desc.table_name,
            "row": row,
            "if_present": if_present,
            "return_row": return_row,
            "durability": desc.options.durability.value,
            "timeout_ms": desc.options.timeout_ms,
        }
        try:
            return self._client.put(**request)
        except StoreError as err:
            if not (is_table_not_found(err) and desc.options.auto_create_table):
                raise self._failure(err, "put: table: %s", desc.table_name) from err
            logger.debug("table %s not found, creating it", desc.table_name)

        self._create_table(desc)
        try:
            return self._client.put(**request)
        except StoreError as err:
            raise self._failure(err, "put: table: %s", desc.table_name) from err

    def _create_table(self, desc: EntityDescriptor[Any]) -> None:
        statement = build_create_table_statement(desc, timestamp_precision=self._config.timestamp_precision)
        run_table_request(
            statement,
            client=self._client,
            limits=table_limits(desc.options),
            timeout_ms=desc.options.timeout_ms,
            config=self._config,
        )

    # reads

    def find_by_id(self, entity_type: type[T], id_value: Any) -> T | None:
        desc = self.entity(entity_type)
        key = self._converter.id_to_key(desc, id_value)
        try:
            result = self._client.get(
                table_name=desc.table_name,
                key=key,
                consistency=desc.options.consistency.value,
                timeout_ms=desc.options.timeout_ms,
            )
        except StoreError as err:
            raise self._failure(err, "get: table: %s key: %s", desc.table_name, key) from err

        row = result.get("row")
        if row is None:
            return None
        return self._converter.read(entity_type, row)

    def find_all_by_id(self, entity_type: type[T], ids: Iterable[Any]) -> list[T]:
        found: list[T] = []
        for id_value in ids:
            obj = self.find_by_id(entity_type, id_value)
            if obj is not None:
                found.append(obj)
        return found

    def exists_by_id(self, entity_type: type[Any], id_value: Any) -> bool:
        return self.find_by_id(entity_type, id_value) is not None

    def find_all(self, entity_type: type[T], *, sort: Sort | None = None) -> list[T]:
        desc = self.entity(entity_type)
        if sort is None or not sort.is_sorted:
            rows = self._run(desc, build_select_all_statement(desc), {})
            return [self._converter.read(entity_type, row) for row in rows]
        return self.find(CriteriaQuery(sort=sort), entity_type)

    def find_all_page(self, entity_type: type[T], pageable: Pageable) -> Page[T]:
        content = self.find(CriteriaQuery().with_pageable(pageable), entity_type)
        return Page(content=content, pageable=pageable, total=self.count(entity_type))

    def count(self, entity_type: type[Any]) -> int:
        desc = self.entity(entity_type)
        return count_value(self._run(desc, build_count_statement(desc), {}, limit=1))

    # deletes

    def delete_by_id(self, entity_type: type[Any], id_value: Any) -> bool:
        desc = self.entity(entity_type)
        key = self._converter.id_to_key(desc, id_value)
        try:
            result = self._client.delete(
                table_name=desc.table_name,
                key=key,
                durability=desc.options.durability.value,
                timeout_ms=desc.options.timeout_ms,
            )
        except StoreError as err:
            raise self._failure(err, "delete: table: %s key: %s", desc.table_name, key) from err
        return bool(result.get("success"))

    def delete_all_by_id(self, entity_type: type[Any], ids: Iterable[Any]) -> None:
        for id_value in ids:
            self.delete_by_id(entity_type, id_value)

    def delete_all(self, entity_type: type[Any]) -> None:
        desc = self.entity(entity_type)
        self._run(desc, build_delete_all_statement(desc), {})

    def delete_in_shard(self, entity_type: type[Any], ids: Sequence[Any]) -> int:
        """Deletes rows that share one shard key in a single store request."""
        desc = self.entity(entity_type)
        if not ids:
            return 0

        keys = [self._converter.id_to_key(desc, id_value) for id_value in ids]
        shard_names = [c.name for c in desc.shard_keys]
        shards = {tuple(key[name] for name in shard_names) for key in keys}
        if len(shards) != 1:
            raise ValidationError(f"{desc.table_name}: all ids must share the same shard key values")

        try:
            result = self._client.multi_delete(
                table_name=desc.table_name,
                keys=keys,
                durability=desc.options.durability.value,
                timeout_ms=desc.options.timeout_ms,
            )
        except StoreError as err:
            raise self._failure(err, "multi delete: table: %s keys: %s", desc.table_name, keys) from err
        return int(result.get("deleted", 0))

    # queries

    def run_query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        return self._run(None, sql, dict(params or {}))

    def find(
        self,
        query: AnyQuery,
        entity_type: type[T],
        *,
        projection: type[Any] | None = None,
    ) -> list[Any]:
        desc = self.entity(entity_type)
        if isinstance(query, CriteriaQuery):
            if projection is not None:
                query = query.with_projection(projection)
            projection = query.projection
        compiled = self._compile(query, desc)
        rows = self._run(desc, compiled.sql, compiled.params)

        if projection is None or projection is entity_type or not is_dataclass(projection):
            target = projection or entity_type
            return [self._converter.read(target, row) for row in rows]
        return [self._converter.read_projection(projection, row) for row in rows]

    def count_rows(self, query: AnyQuery, entity_type: type[Any]) -> list[Mapping[str, Any]]:
        desc = self.entity(entity_type)
        if isinstance(query, CriteriaQuery):
            query = query.with_mode(QueryMode.COUNT)
        compiled = self._compile(query, desc)
        return cast(list[Mapping[str, Any]], self._run(desc, compiled.sql, compiled.params, limit=1))

    def count_query(self, query: AnyQuery, entity_type: type[Any]) -> int:
        return count_value(self.count_rows(query, entity_type))

    def exists_query(self, query: AnyQuery, entity_type: type[Any]) -> bool:
        if isinstance(query, CriteriaQuery):
            return execute_exists(self, query, entity_type)
        return len(self.find(query, entity_type)) > 0

    def delete_query(self, query: AnyQuery, entity_type: type[T]) -> list[T]:
        """Deletes the rows a query matches, one by one, and returns them."""
        desc = self.entity(entity_type)
        if isinstance(query, CriteriaQuery):
            query = query.with_mode(QueryMode.SELECT).with_projection(None)
        deleted = cast(list[T], self.find(query, entity_type))
        id_name = desc.id_property.name
        for obj in deleted:
            self.delete_by_id(entity_type, getattr(obj, id_name))
        return deleted

    def execute_derived(
        self,
        entity_type: type[Any],
        method_name: str,
        *args: Any,
        pageable: Pageable | None = None,
        sort: Sort | None = None,
        as_slice: bool = False,
        projection: type[Any] | None = None,
    ) -> Any:
        desc = self.entity(entity_type)
        derived = parse_derived(method_name, desc, self._context)
        query = derived.create_query(args).with_sort(sort)

        if as_slice:
            shape = ResultShape.SLICE
        elif pageable is not None:
            shape = ResultShape.PAGE
        elif query.is_count or query.is_exists:
            shape = ResultShape.VALUE
        else:
            shape = ResultShape.COLLECTION
        return execute(self, query, entity_type, shape, pageable=pageable, projection=projection)

    def execute_string_query(
        self,
        entity_type: type[Any],
        query: StringQuery,
        *args: Any,
        projection: type[Any] | None = None,
    ) -> Any:
        compiled = query.compile(args)
        match query.mode:
            case QueryMode.COUNT:
                return self.count_query(compiled, entity_type)
            case QueryMode.EXISTS:
                return self.exists_query(compiled, entity_type)
            case QueryMode.DELETE:
                return self.delete_query(compiled, entity_type)
        return self.find(compiled, entity_type, projection=projection)

    # statement pipeline

    def _compile(self, query: AnyQuery, desc: EntityDescriptor[Any]) -> CompiledQuery:
        if isinstance(query, CompiledQuery):
            return query
        return query.compile(desc, self._context)

    def _run(
        self,
        desc: EntityDescriptor[Any] | None,
        sql: str,
        params: Mapping[str, Any],
        *,
        limit: int = 0,
    ) -> list[dict[str, Any]]:
        consistency = desc.options.consistency if desc is not None else Consistency.EVENTUAL
        timeout_ms = desc.options.timeout_ms if desc is not None else 0

        retried = False
        while True:
            handle = self._cache.get_or_prepare(sql, self._prepare)
            for name, value in params.items():
                handle.set_variable(name, self._converter.convert_parameter(value))
            try:
                return self._fetch(handle, consistency=consistency, timeout_ms=timeout_ms, limit=limit)
            except StoreError as err:
                self._cache.remove(sql)
                if retried or not is_stale_statement(err):
                    raise self._failure(err, "query: %s", sql) from err
                logger.debug("stale prepared statement, preparing again: %s", sql)
                retried = True

    def _prepare(self, sql: str) -> PreparedHandle:
        logger.debug("Prepare: %s", sql)
        try:
            return self._client.prepare(statement=sql)
        except StoreError as err:
            raise self._failure(err, "prepare: %s", sql) from err

    def _fetch(
        self,
        handle: PreparedHandle,
        *,
        consistency: Consistency,
        timeout_ms: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        continuation_key: Any = None
        while True:
            result = self._client.query(
                prepared=handle,
                consistency=consistency.value,
                timeout_ms=timeout_ms,
                continuation_key=continuation_key,
                limit=limit,
            )
            rows.extend(dict(row) for row in result.get("rows", ()))
            continuation_key = result.get("continuation_key")
            if continuation_key is None:
                return rows

    def _entity_of(self, obj: Any) -> EntityDescriptor[Any]:
        if obj is None or not is_dataclass(obj) or isinstance(obj, type):
            raise MappingError("entity must be a dataclass instance")
        return self._context.entity(type(obj))

    @staticmethod
    def _failure(err: StoreError, message: str, *args: Any) -> Exception:
        logger.error(message, *args)
        logger.error(err.message)
        return map_store_error(err)
