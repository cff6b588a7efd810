from __future__ import annotations

from deploy_pipeline_contracts import run_record_schema, schema_version_int


def test_schema_version_is_int_ge_1():
    assert schema_version_int() >= 1


def test_run_record_schema_loads():
    s = run_record_schema()
    assert s["type"] == "object"
    assert "transition" in s["$defs"]
