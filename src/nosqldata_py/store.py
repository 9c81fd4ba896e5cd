from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class TableState(Enum):
    ACTIVE = "ACTIVE"
    CREATING = "CREATING"
    DROPPED = "DROPPED"
    DROPPING = "DROPPING"
    UPDATING = "UPDATING"


@dataclass(frozen=True)
class TableLimits:
    read_units: int
    write_units: int
    storage_gb: int
    on_demand: bool = False


class PreparedHandle(Protocol):
    statement: str

    def copy(self) -> PreparedHandle: ...

    def set_variable(self, name: str, value: Any) -> None: ...


@dataclass
class PreparedStatement:
    statement: str
    plan: Any = None
    variables: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> PreparedStatement:
        return PreparedStatement(statement=self.statement, plan=self.plan)

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value


class StoreClient(Protocol):
    """The wire client contract consumed by this package.

    Every method takes keyword arguments and returns a mapping. Failures are
    raised as ``StoreError``.
    """

    def get(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def put(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def delete(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def multi_delete(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def prepare(self, **kwargs: Any) -> PreparedHandle: ...

    def query(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def table_request(self, **kwargs: Any) -> Mapping[str, Any]: ...

    def get_table_schema(self, **kwargs: Any) -> Mapping[str, Any] | None: ...
