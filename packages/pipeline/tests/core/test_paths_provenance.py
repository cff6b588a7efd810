from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from deploy_pipeline.core import errors, paths, provenance, time


def test_state_layout_paths_and_dirs(tmp_path: Path) -> None:
    layout = paths.StateLayout(root=tmp_path)
    assert layout.run_record_json("abc") == tmp_path / "runs" / "abc" / "run_record.json"
    assert layout.publish_log("publish") == tmp_path / "artifacts" / "publish.jsonl"

    layout.ensure_dirs()
    assert (tmp_path / "runs").is_dir()
    assert (tmp_path / "artifacts").is_dir()


def test_safe_name() -> None:
    assert paths.safe_name("prod/eu west") == "prod_eu_west"
    with pytest.raises(ValueError):
        paths.safe_name("..")


def test_stage_error_and_run_id() -> None:
    try:
        raise errors.ProvisionError("boom", detail="quota")
    except Exception as exc:
        err = errors.stage_error_from_exc(exc)
    assert err.exc_type == "ProvisionError"
    assert err.message == "boom"
    assert err.detail == "quota"
    assert "ProvisionError" in err.traceback
    assert errors.StageError.from_dict(err.to_dict()) == err

    rid1, rid2 = provenance.new_run_id(), provenance.new_run_id()
    assert rid1 != rid2 and len(rid1) == 32


def test_graph_errors_carry_context() -> None:
    e = errors.UnknownDependency("publish", "provsion")
    assert e.stage == "publish" and e.dependency == "provsion"
    assert isinstance(e, errors.GraphError)
    assert isinstance(errors.AmbiguousBootstrap("svc", "why"), errors.GraphError)
    assert not isinstance(errors.TestFailure("x"), errors.GraphError)


def test_timer_records_duration() -> None:
    with provenance.Timer() as t:
        pass
    assert t.duration_ms is not None and t.duration_ms >= 0


def test_time_helpers_format() -> None:
    stamp = time.utc_now_iso()
    assert stamp.endswith("Z")
    assert time.parse_utc_iso(stamp).tzinfo is not None


def test_offsetless_timestamp_is_read_as_utc() -> None:
    naive = time.parse_utc_iso("2026-01-05T11:00:00")
    shifted = time.parse_utc_iso("2026-01-05T13:00:00+02:00")
    assert naive.utcoffset() == timedelta(0)
    assert naive == shifted
