from __future__ import annotations

from collections.abc import Sequence
from enum import Enum


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    SIZE_LIMIT = "size_limit"
    UNKNOWN = "unknown"


class NosqlDataError(Exception):
    kind: ErrorKind = ErrorKind.UNKNOWN


class ConfigurationError(NosqlDataError):
    kind = ErrorKind.CONFIGURATION


class MappingError(ConfigurationError):
    pass


class ValidationError(ConfigurationError):
    pass


class EntityDefinitionError(ConfigurationError):
    pass


class SchemaMismatchError(ConfigurationError):
    def __init__(self, *, table_name: str, mismatches: Sequence[str]) -> None:
        super().__init__(f"table {table_name}: schema mismatch: " + "; ".join(mismatches))
        self.table_name = table_name
        self.mismatches = tuple(mismatches)


class StoreError(NosqlDataError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class _MappedStoreError(NosqlDataError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message


class TransientStoreError(_MappedStoreError):
    kind = ErrorKind.TRANSIENT


class QueryTimeoutError(TransientStoreError):
    pass


class PermanentStoreError(_MappedStoreError):
    kind = ErrorKind.PERMANENT


class PermissionDeniedError(PermanentStoreError):
    pass


class ApiUsageError(PermanentStoreError):
    pass


class SizeLimitError(_MappedStoreError):
    kind = ErrorKind.SIZE_LIMIT


def error_kind(err: BaseException) -> ErrorKind:
    if isinstance(err, NosqlDataError):
        return err.kind
    return ErrorKind.UNKNOWN
