from __future__ import annotations

import pytest

import nosqldata_py as nosqldata


def test_init_exposes_lazy_exports_via_getattr() -> None:
    assert callable(nosqldata.NosqlTemplate)
    assert callable(nosqldata.NosqlConverter)
    assert callable(nosqldata.MappingContext)
    assert callable(nosqldata.PreparedQueryCache)
    assert callable(nosqldata.parse_derived)
    assert callable(nosqldata.ensure_table)
    assert callable(nosqldata.build_create_table_statement)
    assert callable(nosqldata.map_store_error)
    assert nosqldata.TableState.ACTIVE.value == "ACTIVE"


def test_every_public_name_resolves() -> None:
    for name in nosqldata.__all__:
        assert getattr(nosqldata, name) is not None


def test_unknown_attributes_raise() -> None:
    with pytest.raises(AttributeError):
        _ = nosqldata.does_not_exist
