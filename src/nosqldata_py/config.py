from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError

DEFAULT_QUERY_CACHE_CAPACITY = 1000
DEFAULT_QUERY_CACHE_LIFETIME_MS = 600_000
DEFAULT_TABLE_REQ_TIMEOUT_MS = 60_000
DEFAULT_TABLE_REQ_POLL_INTERVAL_MS = 500
DEFAULT_TIMESTAMP_PRECISION = 3
MAX_TIMESTAMP_PRECISION = 9

_SECTION = "nosqldata"


@dataclass(frozen=True)
class NosqlDbConfig:
    query_cache_capacity: int = DEFAULT_QUERY_CACHE_CAPACITY
    query_cache_lifetime_ms: int = DEFAULT_QUERY_CACHE_LIFETIME_MS
    table_request_timeout_ms: int = DEFAULT_TABLE_REQ_TIMEOUT_MS
    table_request_poll_interval_ms: int = DEFAULT_TABLE_REQ_POLL_INTERVAL_MS
    timestamp_precision: int = DEFAULT_TIMESTAMP_PRECISION

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{f.name} must be an integer (got {value!r})")
            if value < 0:
                raise ValidationError(f"{f.name} must be >= 0 (got {value})")
        if self.timestamp_precision > MAX_TIMESTAMP_PRECISION:
            raise ValidationError(
                f"timestamp_precision must be between 0 and {MAX_TIMESTAMP_PRECISION} "
                f"(got {self.timestamp_precision})"
            )
        if self.table_request_poll_interval_ms == 0:
            raise ValidationError("table_request_poll_interval_ms must be > 0")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> NosqlDbConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValidationError(f"unknown config keys: {unknown}")
        return cls(**dict(raw))


def parse_config_document(raw: str) -> NosqlDbConfig:
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError("invalid config YAML/JSON") from err

    if parsed is None:
        return NosqlDbConfig()
    if not isinstance(parsed, dict):
        raise ValidationError("config document must be a map/object")

    section = parsed.get(_SECTION, parsed)
    if section is None:
        return NosqlDbConfig()
    if not isinstance(section, dict):
        raise ValidationError(f"config section {_SECTION!r} must be a map/object")
    return NosqlDbConfig.from_mapping(section)


def load_config(path: str | Path) -> NosqlDbConfig:
    return parse_config_document(Path(path).read_text(encoding="utf-8"))
