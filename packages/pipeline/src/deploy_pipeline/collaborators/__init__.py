from __future__ import annotations

from deploy_pipeline.core import Settings

from .command import CommandTestRunner, run_command
from .docker import DockerPublisher
from .http_service import HttpServiceUpdater, make_http_client
from .interfaces import (
    ApplyResult,
    BuilderPublisher,
    Collaborators,
    DesiredState,
    Destination,
    PlanDiff,
    Provisioner,
    ServiceStatus,
    ServiceUpdater,
    TestReport,
    TestRunner,
)
from .local import LocalProvisioner, LocalRegistryPublisher, LocalServicePlatform
from .terraform import TerraformProvisioner


def build_local_collaborators(settings: Settings) -> Collaborators:
    root = settings.state_root / "local"
    registry = LocalRegistryPublisher(root=root)
    platform = LocalServicePlatform(
        root=root,
        registry=registry,
        known_images=frozenset({settings.placeholder_image}),
    )
    return Collaborators(
        provisioner=LocalProvisioner(root=root, platform=platform),
        publisher=registry,
        test_runner=CommandTestRunner(command=list(settings.test_command)),
        service_updater=platform,
    )


def build_external_collaborators(settings: Settings) -> Collaborators:
    if not settings.platform_api_url:
        raise ValueError(
            "The external backend needs DEPLOY_PIPELINE_PLATFORM_API_URL for service updates"
        )
    client = make_http_client(
        base_url=settings.platform_api_url, timeout_s=settings.platform_api_timeout_s
    )
    return Collaborators(
        provisioner=TerraformProvisioner(
            workdir=settings.infra_dir, terraform_bin=settings.terraform_bin
        ),
        publisher=DockerPublisher(docker_bin=settings.docker_bin),
        test_runner=CommandTestRunner(command=list(settings.test_command)),
        service_updater=HttpServiceUpdater(
            client=client, max_attempts=settings.platform_api_max_attempts
        ),
    )


def build_collaborators(settings: Settings) -> Collaborators:
    if settings.backend == "external":
        return build_external_collaborators(settings)
    return build_local_collaborators(settings)


__all__ = [
    "ApplyResult",
    "BuilderPublisher",
    "Collaborators",
    "CommandTestRunner",
    "DesiredState",
    "Destination",
    "DockerPublisher",
    "HttpServiceUpdater",
    "LocalProvisioner",
    "LocalRegistryPublisher",
    "LocalServicePlatform",
    "PlanDiff",
    "Provisioner",
    "ServiceStatus",
    "ServiceUpdater",
    "TerraformProvisioner",
    "TestReport",
    "TestRunner",
    "build_collaborators",
    "build_external_collaborators",
    "build_local_collaborators",
    "make_http_client",
    "run_command",
]
