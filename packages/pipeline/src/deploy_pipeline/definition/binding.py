from __future__ import annotations

from pathlib import Path

from deploy_pipeline.collaborators import Collaborators
from deploy_pipeline.core import DefinitionError, Settings
from deploy_pipeline.pipeline import RunStore, StageDefinition, StageKind
from deploy_pipeline.pipeline.stage import StageExecutor
from deploy_pipeline.stages import (
    CommandTask,
    ProvisionStage,
    PublishStage,
    TestStage,
    UpdateServiceStage,
)

from .models import PipelineDefinition, StageSpec


def _executor(
    spec: StageSpec,
    *,
    settings: Settings,
    collaborators: Collaborators,
    store: RunStore | None,
) -> StageExecutor:
    if spec.kind == StageKind.test:
        return TestStage(runner=collaborators.test_runner, source_root=settings.source_root)
    if spec.kind == StageKind.provision:
        return ProvisionStage(
            provisioner=collaborators.provisioner,
            provisions=frozenset(spec.provisions),
            image_name=settings.image_name,
            bootstrap_image=spec.bootstrap_image,
        )
    if spec.kind == StageKind.publish:
        return PublishStage(
            publisher=collaborators.publisher,
            build_context=settings.build_context,
            image_name=settings.image_name,
            tag_taken=store.has_tag if store is not None else None,
        )
    if spec.kind == StageKind.update_service:
        return UpdateServiceStage(
            updater=collaborators.service_updater, artifact_from=spec.artifact_from
        )
    if spec.kind == StageKind.task and spec.command:
        return CommandTask(command=list(spec.command), cwd=Path(settings.source_root))
    raise DefinitionError(f"Stage {spec.name!r} of kind {spec.kind} has nothing to run")


def bind_definition(
    definition: PipelineDefinition,
    *,
    settings: Settings,
    collaborators: Collaborators,
    store: RunStore | None = None,
) -> list[StageDefinition]:
    """Attach collaborators to each stage spec, keeping declaration order."""
    return [
        StageDefinition(
            name=spec.name,
            executor=_executor(
                spec, settings=settings, collaborators=collaborators, store=store
            ),
            depends_on=tuple(spec.depends_on),
            kind=StageKind(spec.kind),
            provisions=frozenset(spec.provisions),
            bootstrap_image=spec.bootstrap_image,
            required=spec.required,
            secrets=tuple(spec.secrets),
        )
        for spec in definition.stages
    ]
