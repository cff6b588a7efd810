from __future__ import annotations

from deploy_pipeline.core import DEFAULT_PLACEHOLDER_IMAGE
from deploy_pipeline.pipeline.types import BootstrapPolicy, StageKind

from .models import PipelineDefinition, StageSpec


def default_definition(
    policy: BootstrapPolicy | str,
    *,
    placeholder_image: str = DEFAULT_PLACEHOLDER_IMAGE,
) -> PipelineDefinition:
    """
    The standard test / provision / publish / deploy pipeline, shaped for the
    given bootstrap policy:

      placeholder: test -> provision(registry, service@placeholder) -> publish -> update_service
      reorder:     test -> registry -> publish -> service
    """
    policy = BootstrapPolicy(policy)
    test = StageSpec(name="test", kind=StageKind.test)

    if policy == BootstrapPolicy.placeholder:
        stages = [
            test,
            StageSpec(
                name="provision",
                kind=StageKind.provision,
                depends_on=["test"],
                provisions=["registry", "service"],
                bootstrap_image=placeholder_image,
                secrets=["cloud_access_key", "cloud_secret_key"],
            ),
            StageSpec(
                name="publish",
                kind=StageKind.publish,
                depends_on=["provision"],
                secrets=["registry_username", "registry_password"],
            ),
            StageSpec(
                name="update_service",
                kind=StageKind.update_service,
                depends_on=["publish"],
                secrets=["platform_token"],
            ),
        ]
    else:
        stages = [
            test,
            StageSpec(
                name="registry",
                kind=StageKind.provision,
                depends_on=["test"],
                provisions=["registry"],
                secrets=["cloud_access_key", "cloud_secret_key"],
            ),
            StageSpec(
                name="publish",
                kind=StageKind.publish,
                depends_on=["registry"],
                secrets=["registry_username", "registry_password"],
            ),
            StageSpec(
                name="service",
                kind=StageKind.provision,
                depends_on=["publish"],
                provisions=["service"],
                secrets=["cloud_access_key", "cloud_secret_key"],
            ),
        ]

    return PipelineDefinition(name=f"default-{policy.value}", policy=policy.value, stages=stages)
