from __future__ import annotations

import threading

from deploy_pipeline.pipeline import (
    Dispatcher,
    ProvisioningLocks,
    RevisionPushed,
    RunStatus,
    StageOutcome,
    default_locks,
    stage,
)


def _ok(ctx):
    return {}


def test_locks_are_per_environment() -> None:
    locks = ProvisioningLocks()
    assert locks.lock_for("prod") is locks.lock_for("prod")
    assert locks.lock_for("prod") is not locks.lock_for("staging")

    with locks.hold("prod"):
        assert locks.locked("prod")
        assert not locks.locked("staging")
    assert not locks.locked("prod")
    assert default_locks() is default_locks()


def test_push_to_untracked_branch_is_ignored(make_orchestrator, store) -> None:
    d = Dispatcher(make_orchestrator([stage("a", _ok)]), tracked_branch="main")
    assert d.handle(RevisionPushed(revision="r1", branch="feature/x")) is None
    assert store.run_ids() == []


def test_push_to_tracked_branch_runs_the_pipeline(make_orchestrator) -> None:
    d = Dispatcher(make_orchestrator([stage("a", _ok)]), tracked_branch="main")
    record = d.handle(RevisionPushed(revision="r1", branch="main"))
    assert record is not None and record.status == RunStatus.succeeded
    assert record.trigger["revision"] == "r1"
    assert d.in_flight() is None


def test_new_push_supersedes_in_flight_run(make_orchestrator) -> None:
    started = threading.Event()
    release = threading.Event()

    def _slow(ctx):
        if ctx.trigger.revision == "r1":
            started.set()
            release.wait(timeout=10)
        return {}

    d = Dispatcher(
        make_orchestrator([stage("build", _slow), stage("deploy", _ok, depends_on=["build"])]),
        tracked_branch="main",
    )

    results = {}

    def _first() -> None:
        results["r1"] = d.handle(RevisionPushed(revision="r1", branch="main"))

    t = threading.Thread(target=_first)
    t.start()
    assert started.wait(timeout=10)
    assert d.in_flight() == "r1"

    def _second() -> None:
        results["r2"] = d.handle(RevisionPushed(revision="r2", branch="main"))

    t2 = threading.Thread(target=_second)
    t2.start()
    # the second run finishes on its own; the first is cancelled meanwhile
    t2.join(timeout=10)
    release.set()
    t.join(timeout=10)

    first, second = results["r1"], results["r2"]
    assert first.status == RunStatus.cancelled
    assert first.outcome_of("build") == StageOutcome.succeeded
    assert first.outcome_of("deploy") == StageOutcome.skipped
    assert first.results["deploy"].skip_reason == "cancelled (superseded by r2)"
    assert second.status == RunStatus.succeeded
    assert d.in_flight() is None
