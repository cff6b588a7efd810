from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from deploy_pipeline.collaborators import DesiredState, Provisioner
from deploy_pipeline.core import ProvisionError
from deploy_pipeline.pipeline import ArtifactReference, StageContext
from deploy_pipeline.pipeline.events import EventType


@dataclass(slots=True)
class ProvisionStage:
    """
    Apply the infrastructure this stage owns.

    The service image comes from the upstream artifact when there is one.
    Otherwise the stage's bootstrap image is used, and it stays the desired
    image on every run: the update_service stage owns what actually runs,
    so re-provisioning never rolls the service back.
    """

    provisioner: Provisioner
    provisions: frozenset[str]
    image_name: str
    bootstrap_image: str | None = None

    def desired_state(
        self, environment: str, artifact: ArtifactReference | None
    ) -> DesiredState:
        resources: dict[str, dict[str, Any]] = {}
        for res in sorted(self.provisions):
            if res == "service":
                image = artifact.uri if artifact is not None else self.bootstrap_image
                if not image:
                    raise ProvisionError(
                        "Service has no image: no upstream artifact and no bootstrap image"
                    )
                resources[res] = {"name": self.image_name, "image": image}
            else:
                resources[res] = {"name": self.image_name}
        return DesiredState(environment=environment, resources=resources)

    def run(self, ctx: StageContext) -> dict[str, Any]:
        artifact = ctx.optional_artifact() if "service" in self.provisions else None
        desired = self.desired_state(ctx.environment, artifact)

        result = self.provisioner.apply(desired, credentials=ctx.credentials)

        ctx.emit(
            EventType.PROVISION_APPLY,
            resources=sorted(desired.resources),
            status=result.status,
            changes=result.changes,
        )
        out: dict[str, Any] = dict(result.outputs)
        out["provision_status"] = result.status
        out["_metrics"] = {"changes": result.changes}
        if "service" in desired.resources:
            out["service_image"] = desired.resources["service"]["image"]
        return out
