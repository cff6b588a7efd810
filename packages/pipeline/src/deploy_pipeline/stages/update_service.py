from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict

from deploy_pipeline.collaborators import ServiceUpdater
from deploy_pipeline.pipeline import StageContext
from deploy_pipeline.pipeline.events import EventType


class StageUpdateResult(TypedDict):
    service_id: str
    service_image: str
    service_status: str


@dataclass(slots=True)
class UpdateServiceStage:
    """
    Point the running service at the freshly published artifact. Safe to
    repeat: updating to the image already running changes nothing.
    """

    updater: ServiceUpdater
    artifact_from: str | None = None

    def run(self, ctx: StageContext) -> StageUpdateResult:
        service_id = ctx.output("service_id")
        artifact = ctx.artifact(self.artifact_from)

        status = self.updater.update_service(
            service_id, artifact, credentials=ctx.credentials
        )
        ctx.emit(
            EventType.SERVICE_UPDATED,
            service_id=service_id,
            image=status.image,
            status=status.status,
        )
        return {
            "service_id": service_id,
            "service_image": status.image,
            "service_status": status.status,
        }
