from __future__ import annotations

from dataclasses import dataclass

from deploy_pipeline.collaborators import Collaborators, build_collaborators
from deploy_pipeline.core import DefinitionError, ILogger, Settings
from deploy_pipeline.definition import (
    PipelineDefinition,
    bind_definition,
    default_definition,
    load_definition,
)
from deploy_pipeline.pipeline import (
    BootstrapPolicy,
    Dispatcher,
    Orchestrator,
    OrchestratorConfig,
    RunStore,
)


@dataclass(frozen=True, slots=True)
class Pipeline:
    definition: PipelineDefinition
    orchestrator: Orchestrator
    collaborators: Collaborators

    def dispatcher(self, tracked_branch: str) -> Dispatcher:
        return Dispatcher(self.orchestrator, tracked_branch=tracked_branch)


def resolve_definition(settings: Settings) -> PipelineDefinition:
    """The configured definition file, or the built-in one for the configured policy."""
    if settings.definition_path is not None:
        return load_definition(settings.definition_path)
    return default_definition(
        settings.bootstrap_policy, placeholder_image=settings.placeholder_image
    )


def build_pipeline(
    settings: Settings,
    *,
    collaborators: Collaborators | None = None,
    definition: PipelineDefinition | None = None,
    logger: ILogger | None = None,
    policy: BootstrapPolicy | str | None = None,
) -> Pipeline:
    """
    Wire settings, definition and collaborators into an Orchestrator.

    A definition that names a policy overrides the configured one; its graph
    was shaped for that policy. An explicitly requested `policy` must agree
    with it. Graph and bootstrap errors surface here.
    """
    definition = definition or resolve_definition(settings)
    if policy is not None and definition.policy and policy != definition.policy:
        raise DefinitionError(
            f"Requested policy {BootstrapPolicy(policy).value!r} conflicts with "
            f"definition {definition.name!r}, written for {definition.policy!r}"
        )
    policy = BootstrapPolicy(definition.policy or policy or settings.bootstrap_policy)

    store = RunStore(settings.state_root)
    collaborators = collaborators or build_collaborators(settings)
    cfg = OrchestratorConfig.from_settings(settings)
    cfg.policy = policy

    orchestrator = Orchestrator(
        definitions=bind_definition(
            definition, settings=settings, collaborators=collaborators, store=store
        ),
        cfg=cfg,
        store=store,
        logger=logger,
        secrets=settings.secrets,
    )
    return Pipeline(
        definition=definition, orchestrator=orchestrator, collaborators=collaborators
    )
