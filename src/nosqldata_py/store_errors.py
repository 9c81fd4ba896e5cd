from __future__ import annotations

import logging

from .errors import (
    ApiUsageError,
    PermissionDeniedError,
    QueryTimeoutError,
    SizeLimitError,
    StoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

_TRANSIENT_CODES = frozenset(
    {
        "Retryable",
        "Throttling",
        "OperationThrottling",
        "ReadThrottling",
        "WriteThrottling",
        "SecurityInfoNotReady",
    }
)
_PERMISSION_CODES = frozenset({"InvalidAuthorization", "Unauthorized"})
_API_USAGE_CODES = frozenset(
    {
        "IndexExists",
        "IndexNotFound",
        "JsonParse",
        "OperationNotSupported",
        "ResourceExists",
        "ResourceNotFound",
        "TableExists",
        "TableNotFound",
    }
)
_SIZE_LIMIT_CODES = frozenset({"ResourceLimit", "TableSize", "RowSizeLimit", "BatchOperationNumberLimit"})

# Statement handles prepared against an older table version fail with these.
STALE_STATEMENT_CODES = frozenset({"TableNotFound", "PrepareStale", "IllegalState"})


def map_store_error(err: StoreError) -> Exception:
    code = err.code
    message = err.message

    if code == "RequestTimeout":
        return QueryTimeoutError(code=code, message=message)
    if code in _TRANSIENT_CODES:
        return TransientStoreError(code=code, message=message)
    if code in _PERMISSION_CODES:
        return PermissionDeniedError(code=code, message=message)
    if code in _API_USAGE_CODES:
        return ApiUsageError(code=code, message=message)
    if code in _SIZE_LIMIT_CODES:
        return SizeLimitError(code=code, message=message)

    logger.debug("unknown store error passed through: %s", code)
    return err


def is_table_not_found(err: StoreError) -> bool:
    return err.code == "TableNotFound"


def is_stale_statement(err: StoreError) -> bool:
    return err.code in STALE_STATEMENT_CODES
