from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from deploy_pipeline.core import Credentials, fingerprint_obj
from deploy_pipeline.pipeline.types import ArtifactReference


@dataclass(frozen=True, slots=True)
class DesiredState:
    """
    Infrastructure a provisioning stage wants to exist, keyed by resource
    name ("registry", "service", ...). Resources not named are left alone.
    """

    environment: str
    resources: dict[str, dict[str, Any]] = field(default_factory=dict)

    def fingerprint(self, resource: str) -> str:
        return fingerprint_obj(self.resources[resource])

    def to_dict(self) -> dict[str, Any]:
        return {"environment": self.environment, "resources": self.resources}


@dataclass(frozen=True, slots=True)
class ApplyResult:
    outputs: dict[str, str]
    status: str  # "applied" | "unchanged"
    changes: int = 0


@dataclass(frozen=True, slots=True)
class PlanDiff:
    to_add: int = 0
    to_change: int = 0
    to_destroy: int = 0
    details: list[str] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return self.to_add + self.to_change + self.to_destroy

    @property
    def is_noop(self) -> bool:
        return self.changes == 0


@dataclass(frozen=True, slots=True)
class Destination:
    """Where an image is pushed: repository location plus tag."""

    name: str
    location: str
    tag: str

    @property
    def uri(self) -> str:
        return f"{self.location}:{self.tag}"


@dataclass(frozen=True, slots=True)
class TestReport:
    passed: bool
    log: str
    returncode: int | None = None

    __test__ = False

    def tail(self, lines: int = 40) -> str:
        return "\n".join(self.log.splitlines()[-lines:])


@dataclass(frozen=True, slots=True)
class ServiceStatus:
    service_id: str
    image: str
    status: str


class Provisioner(Protocol):
    def apply(self, desired: DesiredState, *, credentials: Credentials) -> ApplyResult: ...

    def plan(self, desired: DesiredState, *, credentials: Credentials) -> PlanDiff: ...


class BuilderPublisher(Protocol):
    def build_and_publish(
        self, build_context: Path, destination: Destination, *, credentials: Credentials
    ) -> ArtifactReference: ...


class TestRunner(Protocol):
    __test__ = False

    def run(self, source_tree: Path, *, credentials: Credentials) -> TestReport: ...


class ServiceUpdater(Protocol):
    def update_service(
        self, service_id: str, artifact: ArtifactReference, *, credentials: Credentials
    ) -> ServiceStatus: ...


@dataclass(frozen=True, slots=True)
class Collaborators:
    provisioner: Provisioner
    publisher: BuilderPublisher
    test_runner: TestRunner
    service_updater: ServiceUpdater
