from __future__ import annotations

from pathlib import Path

import pytest
from deploy_pipeline.core import (
    DuplicateArtifactTag,
    RecordSealedError,
    RunNotFound,
    StageError,
    append_jsonl,
    iter_jsonl,
    read_json,
)
from deploy_pipeline.pipeline import (
    ArtifactReference,
    RunRecord,
    RunStatus,
    RunStore,
    StageOutcome,
    StageResult,
)
from deploy_pipeline_contracts import validate_run_record_dict


def _record(run_id: str = "run1", stages: dict[str, bool] | None = None) -> RunRecord:
    return RunRecord.create(
        run_id=run_id,
        trigger={"type": "revision_pushed", "revision": "rev1", "branch": "main"},
        environment="production",
        policy="reorder",
        stages=stages or {"test": True, "publish": True},
    )


def _art(tag: str, published_at: str = "2026-01-05T10:00:00Z") -> ArtifactReference:
    return ArtifactReference(
        name="app", location="registry.example/app", tag=tag, published_at=published_at
    )


def test_illegal_transitions_are_rejected() -> None:
    rec = _record()
    with pytest.raises(ValueError, match="Illegal transition"):
        rec.complete(StageResult(stage="test", outcome=StageOutcome.succeeded))
    rec.mark_running("test")
    with pytest.raises(ValueError):
        rec.mark_running("test")
    with pytest.raises(KeyError):
        rec.skip("deploy", "nope")


def test_seal_requires_every_stage_finished() -> None:
    rec = _record()
    rec.mark_running("test")
    with pytest.raises(ValueError, match="not finished"):
        rec.seal()


def test_sealed_record_rejects_appends() -> None:
    rec = _record()
    rec.mark_running("test")
    rec.complete(StageResult(stage="test", outcome=StageOutcome.failed))
    rec.skip("publish", "upstream 'test' failed")
    assert rec.seal() == RunStatus.failed

    with pytest.raises(RecordSealedError):
        rec.skip("publish", "again")
    with pytest.raises(RecordSealedError):
        rec.seal()
    assert len(rec.transitions) == 3


def test_cancelled_seal_wins_over_stage_outcomes() -> None:
    rec = _record()
    for name in ("test", "publish"):
        rec.mark_running(name)
        rec.complete(StageResult(stage=name, outcome=StageOutcome.succeeded))
    assert rec.seal(cancelled=True) == RunStatus.cancelled


def test_abort_closes_open_stages_and_seals_failed(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    rec = store.create_run(_record(stages={"test": True, "publish": True, "docs": False}))
    rec.mark_running("test")
    rec.complete(StageResult(stage="test", outcome=StageOutcome.succeeded))
    rec.mark_running("publish")

    err = StageError(exc_type="OSError", message="disk full", traceback="")
    closed = rec.abort(err)

    assert [(t.stage, t.outcome) for t in closed] == [
        ("publish", StageOutcome.failed),
        ("docs", StageOutcome.skipped),
    ]
    assert rec.results["publish"].error == err
    assert rec.results["docs"].skip_reason == "run aborted"
    assert rec.seal(cancelled=True, aborted=True) == RunStatus.failed
    validate_run_record_dict(read_json(store.save_sealed(rec)))
    # the journal stops at the last transition written before the abort
    assert len(list(iter_jsonl(store.layout.transitions_jsonl("run1")))) == 3


def test_saved_record_matches_shipped_schema(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    rec = store.create_run(_record())
    rec.mark_running("test")
    rec.complete(StageResult(stage="test", outcome=StageOutcome.succeeded))
    rec.mark_running("publish")
    rec.complete(
        StageResult(stage="publish", outcome=StageOutcome.succeeded, artifact=_art("rev1"))
    )
    rec.seal()

    path = store.save_sealed(rec)
    validate_run_record_dict(read_json(path))
    with pytest.raises(RecordSealedError):
        store.save_sealed(rec)


def test_unsealed_run_is_rebuilt_from_the_journal(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    rec = store.create_run(_record())
    rec.mark_running("test")
    rec.complete(StageResult(stage="test", outcome=StageOutcome.succeeded))
    rec.mark_running("publish")
    # process dies here

    loaded = RunStore(tmp_path).load("run1")
    assert loaded.status == RunStatus.running
    assert loaded.outcome_of("test") == StageOutcome.succeeded
    assert loaded.outcome_of("publish") == StageOutcome.running
    assert [t.seq for t in loaded.transitions] == [1, 2, 3]


def test_run_ids_are_unique_and_missing_runs_raise(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    store.create_run(_record("run1"))
    with pytest.raises(RecordSealedError):
        store.create_run(_record("run1"))
    with pytest.raises(RunNotFound):
        store.load("nope")
    assert store.run_ids() == ["run1"]


def test_list_runs_newest_first(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    older = _record("a")
    older.started_at_utc = "2026-01-01T00:00:00Z"
    newer = _record("b")
    newer.started_at_utc = "2026-01-02T00:00:00Z"
    store.create_run(older)
    store.create_run(newer)

    assert [r.run_id for r in store.list_runs()] == ["b", "a"]
    assert [r.run_id for r in store.list_runs(limit=1)] == ["b"]


def test_latest_artifact_by_publish_time_then_log_order(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    assert store.latest_artifact("publish") is None

    store.record_publish(run_id="r1", stage="publish", artifact=_art("b", "2026-01-05T10:00:00Z"))
    store.record_publish(run_id="r2", stage="publish", artifact=_art("a", "2026-01-05T09:00:00Z"))
    assert store.latest_artifact("publish").tag == "b"

    store.record_publish(run_id="r3", stage="publish", artifact=_art("c", "2026-01-05T10:00:00Z"))
    assert store.latest_artifact("publish").tag == "c"
    assert [a.tag for a in store.artifacts("publish")] == ["b", "a", "c"]


def test_latest_artifact_reads_offsetless_timestamps_as_utc(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    store.record_publish(run_id="r1", stage="publish", artifact=_art("z", "2026-01-05T10:00:00Z"))
    store.record_publish(run_id="r2", stage="publish", artifact=_art("n", "2026-01-05T11:00:00"))
    store.record_publish(
        run_id="r3", stage="publish", artifact=_art("o", "2026-01-05T11:30:00+02:00")
    )

    assert store.latest_artifact("publish").tag == "n"


def test_duplicate_tag_rejected_across_stages(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    store.record_publish(run_id="r1", stage="publish", artifact=_art("rev1"))
    assert store.has_tag("registry.example/app", "rev1")
    assert not store.has_tag("registry.example/other", "rev1")
    with pytest.raises(DuplicateArtifactTag):
        store.record_publish(run_id="r2", stage="publish_again", artifact=_art("rev1"))


def test_torn_last_transition_line_is_ignored(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    rec = store.create_run(_record())
    rec.mark_running("test")
    with store.layout.transitions_jsonl("run1").open("a", encoding="utf-8") as f:
        f.write('{"seq": 2, "stage": "te')

    loaded = store.load("run1")
    assert loaded.outcome_of("test") == StageOutcome.running


def test_has_tag_scans_every_publish_log(tmp_path: Path) -> None:
    store = RunStore(tmp_path)
    append_jsonl(store.layout.publish_log("publish_eu"), {"artifact": _art("x").to_dict()})
    assert store.has_tag("registry.example/app", "x")
