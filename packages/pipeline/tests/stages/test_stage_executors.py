from __future__ import annotations

import subprocess
from pathlib import Path

import pytest
from deploy_pipeline.collaborators import DesiredState
from deploy_pipeline.core import ProvisionError, PublishError, StageExecutionError, TestFailure
from deploy_pipeline.pipeline import ArtifactReference
from deploy_pipeline.stages import (
    CommandTask,
    ProvisionStage,
    PublishStage,
    TestStage,
    UpdateServiceStage,
    unique_tag,
)

ART = ArtifactReference(
    name="app",
    location="registry.example/app",
    tag="rev123",
    published_at="2026-01-05T10:00:00Z",
)


def test_test_stage_passes_and_fails(make_stage_ctx, fakes, tmp_path: Path) -> None:
    st = TestStage(runner=fakes.test_runner, source_root=tmp_path)
    out = st.run(make_stage_ctx("test"))
    assert out["tests"] == "passed"
    assert "test_duration_ms" in out["_metrics"]

    fakes.test_runner.passed = False
    fakes.test_runner.log = "\n".join(f"line {i}" for i in range(100))
    with pytest.raises(TestFailure) as ei:
        st.run(make_stage_ctx("test"))
    assert ei.value.detail.splitlines()[-1] == "line 99"
    assert "line 0" not in ei.value.detail.splitlines()


def test_provision_uses_bootstrap_image_without_upstream_artifact() -> None:
    st = ProvisionStage(
        provisioner=None,
        provisions=frozenset({"registry", "service"}),
        image_name="app",
        bootstrap_image="pause:3.9",
    )
    desired = st.desired_state("production", None)
    assert desired == DesiredState(
        environment="production",
        resources={
            "registry": {"name": "app"},
            "service": {"name": "app", "image": "pause:3.9"},
        },
    )
    assert st.desired_state("production", ART).resources["service"]["image"] == ART.uri


def test_provision_service_without_any_image_fails() -> None:
    st = ProvisionStage(provisioner=None, provisions=frozenset({"service"}), image_name="app")
    with pytest.raises(ProvisionError):
        st.desired_state("production", None)


def test_provision_run_returns_provisioner_outputs(make_stage_ctx, fakes) -> None:
    st = ProvisionStage(
        provisioner=fakes.provisioner, provisions=frozenset({"registry"}), image_name="app"
    )
    out = st.run(make_stage_ctx("provision", credentials={"cloud_access_key": "k"}))

    assert out["registry_uri"] == "registry.example/app"
    assert out["provision_status"] == "applied"
    assert out["_metrics"] == {"changes": 1}
    assert "service_image" not in out
    assert fakes.provisioner.credentials_seen == [["cloud_access_key"]]


def test_publish_tags_with_revision(make_stage_ctx, fakes, tmp_path: Path) -> None:
    st = PublishStage(publisher=fakes.publisher, build_context=tmp_path, image_name="app")
    out = st.run(
        make_stage_ctx(
            "publish",
            revision="abc123",
            outputs={"provision": {"registry_uri": "registry.example/app"}},
        )
    )
    assert out["image_uri"] == "registry.example/app:abc123"
    assert out["_artifact"].tag == "abc123"


def test_publish_without_registry_output_fails(make_stage_ctx, fakes, tmp_path: Path) -> None:
    st = PublishStage(publisher=fakes.publisher, build_context=tmp_path, image_name="app")
    with pytest.raises(KeyError, match="registry_uri"):
        st.run(make_stage_ctx("publish"))
    assert fakes.publisher.published == []


def test_unique_tag_appends_revision_suffix() -> None:
    taken = {("r/app", "v1"), ("r/app", "v1-r2")}
    assert unique_tag("r/app", "v1", None) == "v1"
    assert unique_tag("r/app", "v2", lambda loc, tag: (loc, tag) in taken) == "v2"
    assert unique_tag("r/app", "v1", lambda loc, tag: (loc, tag) in taken) == "v1-r3"
    with pytest.raises(PublishError):
        unique_tag("r/app", "v1", lambda loc, tag: True)


def test_update_service_points_service_at_artifact(make_stage_ctx, fakes) -> None:
    st = UpdateServiceStage(updater=fakes.service_updater)
    out = st.run(
        make_stage_ctx(
            "update_service",
            outputs={"provision": {"service_id": "production/app"}},
            artifacts={"publish": ART},
        )
    )
    assert out == {
        "service_id": "production/app",
        "service_image": ART.uri,
        "service_status": "running",
    }
    assert fakes.service_updater.calls == [("production/app", ART.uri)]


def test_update_service_needs_a_single_artifact_or_a_named_one(make_stage_ctx, fakes) -> None:
    other = ArtifactReference(
        name="docs", location="r/docs", tag="rev123", published_at=ART.published_at
    )
    ctx = make_stage_ctx(
        "update_service",
        outputs={"provision": {"service_id": "production/app"}},
        artifacts={"publish": ART, "publish_docs": other},
    )
    with pytest.raises(KeyError, match="exactly one"):
        UpdateServiceStage(updater=fakes.service_updater).run(ctx)

    out = UpdateServiceStage(updater=fakes.service_updater, artifact_from="publish").run(ctx)
    assert out["service_image"] == ART.uri


def _completed(returncode: int, stdout: str = "", stderr: str = ""):
    def _runner(args, **kw):
        _runner.calls.append((args, kw))
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)

    _runner.calls = []
    return _runner


def test_command_task_exposes_revision_and_credentials(make_stage_ctx, tmp_path: Path) -> None:
    runner = _completed(0, stdout="migrated\n")
    task = CommandTask(command=["./migrate.sh"], cwd=tmp_path, runner=runner)
    out = task.run(make_stage_ctx("migrate", revision="abc", credentials={"db_password": "pw"}))

    assert out == {"returncode": "0"}
    args, kw = runner.calls[0]
    assert args == ["./migrate.sh"]
    assert kw["env"]["DEPLOY_REVISION"] == "abc"
    assert kw["env"]["DEPLOY_ENVIRONMENT"] == "production"
    assert kw["env"]["db_password"] == "pw"


def test_command_task_failure_keeps_output(make_stage_ctx, tmp_path: Path) -> None:
    task = CommandTask(
        command=["./migrate.sh"], cwd=tmp_path, runner=_completed(3, stderr="relation exists")
    )
    with pytest.raises(StageExecutionError, match="exited with 3") as ei:
        task.run(make_stage_ctx("migrate"))
    assert "relation exists" in ei.value.detail
