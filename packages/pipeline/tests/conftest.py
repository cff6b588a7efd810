from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pytest
from deploy_pipeline.collaborators import (
    ApplyResult,
    Collaborators,
    DesiredState,
    Destination,
    PlanDiff,
    ServiceStatus,
    TestReport,
)
from deploy_pipeline.core import Credentials, ProvisionError, get_logger, utc_now_iso
from deploy_pipeline.pipeline import (
    ArtifactReference,
    BootstrapPolicy,
    EventSink,
    Orchestrator,
    OrchestratorConfig,
    ProvisioningLocks,
    RevisionPushed,
    RunContext,
    RunStore,
    StageContext,
    StageDefinition,
)
from pydantic import SecretStr


@dataclass
class FakeProvisioner:
    outputs: dict[str, str] = field(default_factory=dict)
    fail: bool = False
    applied: list[DesiredState] = field(default_factory=list)
    credentials_seen: list[list[str]] = field(default_factory=list)

    def apply(self, desired: DesiredState, *, credentials: Credentials) -> ApplyResult:
        self.credentials_seen.append(credentials.names())
        if self.fail:
            raise ProvisionError("apply failed", detail="quota exceeded")
        self.applied.append(desired)
        return ApplyResult(outputs=dict(self.outputs), status="applied", changes=1)

    def plan(self, desired: DesiredState, *, credentials: Credentials) -> PlanDiff:
        return PlanDiff(to_add=len(desired.resources))


@dataclass
class FakePublisher:
    published: list[Destination] = field(default_factory=list)

    def build_and_publish(
        self, build_context: Path, destination: Destination, *, credentials: Credentials
    ) -> ArtifactReference:
        self.published.append(destination)
        return ArtifactReference(
            name=destination.name,
            location=destination.location,
            tag=destination.tag,
            published_at=utc_now_iso(),
        )


@dataclass
class FakeTestRunner:
    passed: bool = True
    log: str = "3 passed"

    def run(self, source_tree: Path, *, credentials: Credentials) -> TestReport:
        return TestReport(passed=self.passed, log=self.log, returncode=0 if self.passed else 1)


@dataclass
class FakeUpdater:
    calls: list[tuple[str, str]] = field(default_factory=list)

    def update_service(
        self, service_id: str, artifact: ArtifactReference, *, credentials: Credentials
    ) -> ServiceStatus:
        self.calls.append((service_id, artifact.uri))
        return ServiceStatus(service_id=service_id, image=artifact.uri, status="running")


@pytest.fixture
def fakes() -> Collaborators:
    return Collaborators(
        provisioner=FakeProvisioner(
            outputs={"registry_uri": "registry.example/app", "service_id": "production/app"}
        ),
        publisher=FakePublisher(),
        test_runner=FakeTestRunner(),
        service_updater=FakeUpdater(),
    )


@pytest.fixture
def store(tmp_path: Path) -> RunStore:
    return RunStore(tmp_path / "state")


@pytest.fixture
def logger():
    return get_logger("tests")


@pytest.fixture
def make_orchestrator(store: RunStore, logger) -> Callable[..., Orchestrator]:
    """Orchestrator factory with an isolated lock registry and the test store."""

    def _make(
        definitions: list[StageDefinition],
        *,
        policy: BootstrapPolicy = BootstrapPolicy.placeholder,
        environment: str = "production",
        max_parallel_stages: int = 4,
        locks: ProvisioningLocks | None = None,
        secrets: dict[str, Any] | None = None,
    ) -> Orchestrator:
        return Orchestrator(
            definitions=definitions,
            cfg=OrchestratorConfig(
                environment=environment,
                policy=policy,
                max_parallel_stages=max_parallel_stages,
                state_root=store.layout.root,
            ),
            store=store,
            locks=locks or ProvisioningLocks(),
            logger=logger,
            secrets=secrets,
        )

    return _make


@pytest.fixture
def make_stage_ctx(tmp_path: Path, logger) -> Callable[..., StageContext]:
    """StageContext for calling one executor directly, outside an orchestrator."""

    def _make(
        stage: str = "stage",
        *,
        revision: str = "rev123",
        environment: str = "production",
        outputs: dict[str, dict[str, str]] | None = None,
        artifacts: dict[str, ArtifactReference] | None = None,
        credentials: dict[str, str] | None = None,
    ) -> StageContext:
        run = RunContext(
            run_id="run-test",
            run_root=tmp_path / "run",
            environment=environment,
            trigger=RevisionPushed(revision=revision, branch="main"),
            policy=BootstrapPolicy.placeholder,
            logger=logger,
            events=EventSink(tmp_path / "run" / "events.jsonl"),
        )
        return StageContext(
            run=run,
            stage=stage,
            artifacts=dict(artifacts or {}),
            outputs=dict(outputs or {}),
            credentials=Credentials(
                values={k: SecretStr(v) for k, v in (credentials or {}).items()}
            ),
            logger=logger,
        )

    return _make
