from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from deploy_pipeline.app import build_pipeline
from deploy_pipeline.collaborators import build_local_collaborators
from deploy_pipeline.core import AmbiguousBootstrap, DefinitionError, Settings
from deploy_pipeline.definition import default_definition
from deploy_pipeline.pipeline import ProvisioningLocks, RevisionPushed, RunStatus, StageOutcome


def _settings(tmp_path: Path, **kw) -> Settings:
    src = tmp_path / "src"
    src.mkdir(exist_ok=True)
    (src / "app.py").write_text("print('hello')\n")
    return Settings(
        state_root=tmp_path / "state",
        source_root=src,
        build_context=src,
        placeholder_image="pause:3.9",
        **kw,
    )


def _pipeline(settings: Settings, fakes):
    collab = replace(build_local_collaborators(settings), test_runner=fakes.test_runner)
    pipeline = build_pipeline(settings, collaborators=collab)
    pipeline.orchestrator.locks = ProvisioningLocks()
    return pipeline


def _push(revision: str) -> RevisionPushed:
    return RevisionPushed(revision=revision, branch="main")


def test_first_deploy_with_placeholder_ends_on_published_image(tmp_path: Path, fakes) -> None:
    settings = _settings(tmp_path, bootstrap_policy="placeholder")
    pipeline = _pipeline(settings, fakes)
    platform = pipeline.collaborators.service_updater

    first = pipeline.orchestrator.run(_push("rev1"))
    assert first.status == RunStatus.succeeded
    assert first.results["provision"].outputs["service_image"] == "pause:3.9"
    assert platform.describe("production/app").image == "registry.local/app:rev1"
    assert platform.describe("production/app").status == "running"

    second = pipeline.orchestrator.run(_push("rev2"))
    assert second.status == RunStatus.succeeded
    # re-provisioning is a no-op and never rolls the service back
    assert second.results["provision"].metrics == {"changes": 0}
    assert second.results["provision"].outputs["provision_status"] == "unchanged"
    assert platform.describe("production/app").image == "registry.local/app:rev2"


def test_first_deploy_with_reorder_creates_service_on_published_image(tmp_path: Path, fakes) -> None:
    settings = _settings(tmp_path, bootstrap_policy="reorder")
    pipeline = _pipeline(settings, fakes)

    record = pipeline.orchestrator.run(_push("rev1"))
    assert record.status == RunStatus.succeeded
    assert list(record.stages) == ["test", "registry", "publish", "service"]
    assert record.results["service"].outputs["service_image"] == "registry.local/app:rev1"
    assert (
        pipeline.collaborators.service_updater.describe("production/app").image
        == "registry.local/app:rev1"
    )


def test_failed_tests_leave_infrastructure_untouched(tmp_path: Path, fakes) -> None:
    settings = _settings(tmp_path)
    fakes.test_runner.passed = False
    pipeline = _pipeline(settings, fakes)

    record = pipeline.orchestrator.run(_push("rev1"))
    assert record.status == RunStatus.failed
    assert record.outcome_of("update_service") == StageOutcome.skipped
    assert not (settings.state_root / "local" / "provisioner").exists()


def test_definition_policy_overrides_settings(tmp_path: Path, fakes) -> None:
    settings = _settings(tmp_path, bootstrap_policy="placeholder")
    pipeline = build_pipeline(
        settings, collaborators=fakes, definition=default_definition("reorder")
    )
    assert pipeline.orchestrator.policy.value == "reorder"


def test_ambiguous_definition_rejected_at_build(tmp_path: Path, fakes) -> None:
    defn = default_definition("placeholder")
    ambiguous = defn.model_copy(update={"policy": "reorder"})
    with pytest.raises(AmbiguousBootstrap):
        build_pipeline(_settings(tmp_path), collaborators=fakes, definition=ambiguous)


def test_explicit_policy_must_match_the_definition(tmp_path: Path, fakes) -> None:
    settings = _settings(tmp_path)
    with pytest.raises(DefinitionError, match="conflicts"):
        build_pipeline(
            settings,
            collaborators=fakes,
            definition=default_definition("reorder"),
            policy="placeholder",
        )

    pipeline = build_pipeline(
        settings,
        collaborators=fakes,
        definition=default_definition("reorder"),
        policy="reorder",
    )
    assert pipeline.orchestrator.policy.value == "reorder"
