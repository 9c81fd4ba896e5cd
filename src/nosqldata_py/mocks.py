from __future__ import annotations

import copy
import itertools
import re
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from .errors import StoreError
from .store import PreparedHandle, PreparedStatement


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()


def _assert_match(expected: Any, actual: Any, *, path: str) -> None:
    if expected is ANY:
        return

    if isinstance(expected, dict):
        if not isinstance(actual, Mapping):
            raise AssertionError(f"{path}: expected dict, got {type(actual).__name__}")
        for k, v in expected.items():
            if k not in actual:
                raise AssertionError(f"{path}: missing key {k!r}")
            _assert_match(v, actual[k], path=f"{path}.{k}")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            raise AssertionError(f"{path}: expected list, got {type(actual).__name__}")
        if len(expected) != len(actual):
            raise AssertionError(f"{path}: expected {len(expected)} items, got {len(actual)}")
        for i, (e, a) in enumerate(zip(expected, actual, strict=True)):
            _assert_match(e, a, path=f"{path}[{i}]")
        return

    if expected != actual:
        raise AssertionError(f"{path}: expected {expected!r}, got {actual!r}")


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None
    response: Any = None
    error: Exception | None = None


class FakeStoreClient:
    def __init__(self) -> None:
        self._expected: list[ExpectedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: Mapping[str, Any] | Callable[[Mapping[str, Any]], None] | None = None,
        *,
        response: Any = None,
        error: Exception | None = None,
    ) -> None:
        self._expected.append(ExpectedCall(method=method, expected=expected, response=response, error=error))

    def assert_no_pending(self) -> None:
        if self._expected:
            raise AssertionError(f"pending expected calls: {self._expected!r}")

    def _handle(self, method: str, req: dict[str, Any]) -> Any:
        self.calls.append((method, dict(req)))
        if not self._expected:
            raise AssertionError(f"unexpected call: {method}")

        call = self._expected.pop(0)
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")

        if callable(call.expected):
            call.expected(req)
        elif call.expected is not None:
            _assert_match(dict(call.expected), req, path=method)

        if call.error is not None:
            raise call.error

        return call.response

    def get(self, **kwargs: Any) -> Mapping[str, Any]:
        return dict(self._handle("get", kwargs) or {})

    def put(self, **kwargs: Any) -> Mapping[str, Any]:
        return dict(self._handle("put", kwargs) or {"success": True})

    def delete(self, **kwargs: Any) -> Mapping[str, Any]:
        return dict(self._handle("delete", kwargs) or {"success": True})

    def multi_delete(self, **kwargs: Any) -> Mapping[str, Any]:
        return dict(self._handle("multi_delete", kwargs) or {"deleted": 0})

    def prepare(self, **kwargs: Any) -> PreparedHandle:
        handle = self._handle("prepare", kwargs)
        if handle is None:
            return PreparedStatement(statement=kwargs["statement"])
        return handle

    def query(self, **kwargs: Any) -> Mapping[str, Any]:
        return dict(self._handle("query", kwargs) or {"rows": []})

    def table_request(self, **kwargs: Any) -> Mapping[str, Any]:
        return dict(self._handle("table_request", kwargs) or {"state": "ACTIVE"})

    def get_table_schema(self, **kwargs: Any) -> Mapping[str, Any] | None:
        return self._handle("get_table_schema", kwargs)


QueryHandler: TypeAlias = Callable[[str, Mapping[str, Any]], Sequence[Mapping[str, Any]] | None]

_CREATE_RE = re.compile(r"^CREATE TABLE IF NOT EXISTS (\w+) \((.*)\)(?: USING TTL (\d+ \w+))?$", re.DOTALL)
_DROP_RE = re.compile(r"^DROP TABLE IF EXISTS (\w+)$")
_SELECT_ALL_RE = re.compile(r"^SELECT \* FROM (\w+) t$")
_COUNT_RE = re.compile(r"^SELECT count\(\*\) FROM (\w+)$")
_DELETE_ALL_RE = re.compile(r"^DELETE FROM (\w+)$")
_UPDATE_RE = re.compile(r"UPDATE (\w+) t SET t\.kv_json_ = \$json WHERE t\.(\w+) = \$id$")


def _split_top_level(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
            continue
        current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


@dataclass
class _Table:
    shard_keys: list[str]
    primary_keys: list[str]
    columns: list[dict[str, Any]]
    ttl: str | None = None
    rows: dict[tuple[Any, ...], dict[str, Any]] = field(default_factory=dict)

    def generated(self) -> dict[str, Any] | None:
        for col in self.columns:
            if col.get("generated"):
                return col
        return None

    def key_of(self, row: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(row.get(name) for name in self.primary_keys)


class InMemoryStoreClient:
    """Dict-backed ``StoreClient`` for end-to-end template tests.

    Tables are created from the DDL this package emits. Statements the store
    understands natively (select all, count, delete all, update by id) are
    served from memory; anything else goes to ``query_handler``, which
    receives the statement text and its bound variables.
    """

    def __init__(self, *, query_handler: QueryHandler | None = None, page_size: int = 0) -> None:
        self._lock = threading.Lock()
        self._tables: dict[str, _Table] = {}
        self._sequence = itertools.count(1)
        self._query_handler = query_handler
        self._page_size = page_size
        self.statements: list[str] = []

    def rows(self, table_name: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._table(table_name).rows.values()]

    def has_table(self, table_name: str) -> bool:
        return table_name.lower() in self._tables

    def _table(self, table_name: str) -> _Table:
        table = self._tables.get(table_name.lower())
        if table is None:
            raise StoreError(code="TableNotFound", message=f"Table not found: {table_name}")
        return table

    # key/value

    def get(self, *, table_name: str, key: Mapping[str, Any], **_: Any) -> Mapping[str, Any]:
        with self._lock:
            table = self._table(table_name)
            row = table.rows.get(table.key_of(key))
            return {"row": copy.deepcopy(row)} if row is not None else {}

    def put(
        self,
        *,
        table_name: str,
        row: Mapping[str, Any],
        if_present: bool = False,
        return_row: bool = False,
        **_: Any,
    ) -> Mapping[str, Any]:
        with self._lock:
            table = self._table(table_name)
            stored = copy.deepcopy(dict(row))
            generated_value: Any = None
            gen = table.generated()
            if gen is not None and stored.get(gen["name"]) is None:
                generated_value = next(self._sequence) if gen["generated"] == "IDENTITY" else str(uuid.uuid4())
                stored[gen["name"]] = generated_value

            missing = [k for k in table.primary_keys if stored.get(k) is None]
            if missing:
                raise StoreError(code="IllegalArgument", message=f"primary key fields missing: {missing}")

            key = table.key_of(stored)
            if if_present and key not in table.rows:
                return {"success": False, "generated_value": None}
            table.rows[key] = stored
            return {"success": True, "generated_value": generated_value}

    def delete(self, *, table_name: str, key: Mapping[str, Any], **_: Any) -> Mapping[str, Any]:
        with self._lock:
            table = self._table(table_name)
            return {"success": table.rows.pop(table.key_of(key), None) is not None}

    def multi_delete(self, *, table_name: str, keys: Sequence[Mapping[str, Any]], **_: Any) -> Mapping[str, Any]:
        with self._lock:
            table = self._table(table_name)
            deleted = sum(1 for key in keys if table.rows.pop(table.key_of(key), None) is not None)
            return {"deleted": deleted}

    # statements

    def prepare(self, *, statement: str) -> PreparedHandle:
        self.statements.append(statement)
        return PreparedStatement(statement=statement)

    def query(
        self,
        *,
        prepared: PreparedHandle,
        continuation_key: Any = None,
        **_: Any,
    ) -> Mapping[str, Any]:
        variables = dict(getattr(prepared, "variables", {}))
        with self._lock:
            rows = self._execute(prepared.statement, variables)

        start = int(continuation_key or 0)
        if self._page_size <= 0:
            return {"rows": rows[start:], "continuation_key": None}
        end = start + self._page_size
        return {"rows": rows[start:end], "continuation_key": end if end < len(rows) else None}

    def _execute(self, statement: str, variables: Mapping[str, Any]) -> list[dict[str, Any]]:
        sql = statement.split("; ")[-1] if statement.upper().startswith("DECLARE") else statement

        if m := _SELECT_ALL_RE.match(sql):
            return [copy.deepcopy(r) for r in self._table(m.group(1)).rows.values()]
        if m := _COUNT_RE.match(sql):
            return [{"Column_1": len(self._table(m.group(1)).rows)}]
        if m := _DELETE_ALL_RE.match(sql):
            table = self._table(m.group(1))
            deleted = len(table.rows)
            table.rows.clear()
            return [{"numRowsDeleted": deleted}]
        if m := _UPDATE_RE.search(sql):
            table = self._table(m.group(1))
            row = table.rows.get(table.key_of({m.group(2): variables.get("$id")}))
            if row is None:
                return [{"NumRowsUpdated": 0}]
            row["kv_json_"] = copy.deepcopy(variables.get("$json"))
            return [{"NumRowsUpdated": 1}]

        if self._query_handler is None:
            raise StoreError(code="OperationNotSupported", message=f"no handler for statement: {statement}")
        return [dict(r) for r in self._query_handler(statement, variables) or ()]

    # tables

    def table_request(self, *, statement: str, **_: Any) -> Mapping[str, Any]:
        with self._lock:
            self.statements.append(statement)
            if m := _DROP_RE.match(statement):
                self._tables.pop(m.group(1).lower(), None)
                return {"state": "DROPPED"}
            if m := _CREATE_RE.match(statement):
                name = m.group(1)
                if name.lower() not in self._tables:
                    self._tables[name.lower()] = self._parse_table(m.group(2), m.group(3))
                return {"state": "ACTIVE"}
        raise StoreError(code="IllegalArgument", message=f"unsupported DDL: {statement}")

    @staticmethod
    def _parse_table(body: str, ttl: str | None) -> _Table:
        columns: list[dict[str, Any]] = []
        shard: list[str] = []
        primary: list[str] = []
        for part in _split_top_level(body):
            if part.upper().startswith("PRIMARY KEY("):
                for item in _split_top_level(part[len("PRIMARY KEY(") : -1]):
                    if item.upper().startswith("SHARD("):
                        names = [n.strip() for n in item[len("SHARD(") : -1].split(",")]
                        shard.extend(names)
                        primary.extend(names)
                    else:
                        primary.append(item.strip())
                continue
            name, _, rest = part.partition(" ")
            generated = None
            if "IDENTITY" in rest.upper():
                generated = "IDENTITY"
            elif "UUID" in rest.upper():
                generated = "UUID"
            columns.append({"name": name, "type": rest.split(" ", 1)[0], "generated": generated})
        return _Table(shard_keys=shard or list(primary), primary_keys=primary, columns=columns, ttl=ttl)

    def get_table_schema(self, *, table_name: str) -> Mapping[str, Any] | None:
        with self._lock:
            table = self._tables.get(table_name.lower())
            if table is None:
                return None
            by_name = {c["name"]: c for c in table.columns}
            return {
                "shard_keys": [dict(by_name[n]) for n in table.shard_keys],
                "primary_keys": [dict(by_name[n]) for n in table.primary_keys],
                "columns": [dict(c) for c in table.columns],
                "ttl": table.ttl,
            }
