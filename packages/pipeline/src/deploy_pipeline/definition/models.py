from __future__ import annotations

from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator

from deploy_pipeline.pipeline.graph import STAGE_NAME_MAX, STAGE_NAME_PATTERN
from deploy_pipeline.pipeline.types import StageKind

StageName = Annotated[
    str,
    StringConstraints(min_length=1, max_length=STAGE_NAME_MAX, pattern=STAGE_NAME_PATTERN),
]
SecretName = Annotated[
    str,
    StringConstraints(min_length=1, max_length=64, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$"),
]
Resource = Literal["registry", "service"]


class StageSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: StageName
    kind: StageKind
    depends_on: list[StageName] = Field(default_factory=list)
    required: bool = True
    secrets: list[SecretName] = Field(default_factory=list)
    description: Optional[str] = None

    # provision
    provisions: list[Resource] = Field(default_factory=list)
    bootstrap_image: Optional[str] = Field(default=None, min_length=1)

    # update_service
    artifact_from: Optional[StageName] = None

    # task
    command: Optional[list[str]] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _validate_kind_fields(self) -> "StageSpec":
        if self.kind == StageKind.provision and not self.provisions:
            raise ValueError(f"provision stage {self.name!r} must list what it provisions")
        if self.kind != StageKind.provision and (self.provisions or self.bootstrap_image):
            raise ValueError(
                f"only provision stages may set provisions/bootstrap_image ({self.name!r})"
            )
        if self.bootstrap_image and "service" not in self.provisions:
            raise ValueError(
                f"bootstrap_image on {self.name!r} requires it to provision 'service'"
            )
        if self.kind == StageKind.task and not self.command:
            raise ValueError(f"task stage {self.name!r} needs a command")
        if self.kind != StageKind.task and self.command:
            raise ValueError(f"only task stages may set command ({self.name!r})")
        if self.artifact_from and self.kind != StageKind.update_service:
            raise ValueError(f"only update_service stages may set artifact_from ({self.name!r})")
        if len(set(self.depends_on)) != len(self.depends_on):
            raise ValueError(f"stage {self.name!r} lists a dependency twice")
        return self


class PipelineDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    spec_version: int = Field(default=1, ge=1)
    name: str = Field(..., min_length=1)
    policy: Optional[Literal["placeholder", "reorder"]] = None
    stages: list[StageSpec] = Field(..., min_length=1)
