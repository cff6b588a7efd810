from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypedDict

from deploy_pipeline.collaborators import BuilderPublisher, Destination
from deploy_pipeline.core import PublishError
from deploy_pipeline.pipeline import ArtifactReference, StageContext
from deploy_pipeline.pipeline.events import EventType

TagTaken = Callable[[str, str], bool]

MAX_TAG_REVISIONS = 100


class StagePublishResult(TypedDict):
    image_uri: str
    _artifact: ArtifactReference


def unique_tag(location: str, base: str, taken: TagTaken | None) -> str:
    """
    `base`, or `base-r2`, `base-r3`, ... when the revision was already
    published to `location` (a re-triggered run of the same revision).
    """
    if taken is None or not taken(location, base):
        return base
    for n in range(2, MAX_TAG_REVISIONS + 1):
        candidate = f"{base}-r{n}"
        if not taken(location, candidate):
            return candidate
    raise PublishError(f"Too many publishes of {base!r} to {location}")


@dataclass(slots=True)
class PublishStage:
    """
    Build the image from the build context and push it to the registry that
    an upstream stage reported as `registry_uri`, tagged with the revision.
    """

    publisher: BuilderPublisher
    build_context: Path
    image_name: str
    tag_taken: TagTaken | None = None

    def run(self, ctx: StageContext) -> StagePublishResult:
        location = ctx.output("registry_uri")
        tag = unique_tag(location, ctx.trigger.revision, self.tag_taken)
        dest = Destination(name=self.image_name, location=location, tag=tag)

        artifact = self.publisher.build_and_publish(
            Path(self.build_context), dest, credentials=ctx.credentials
        )
        ctx.emit(
            EventType.ARTIFACT_PUBLISHED,
            uri=artifact.uri,
            digest=artifact.digest,
            published_at=artifact.published_at,
        )
        return {"image_uri": artifact.uri, "_artifact": artifact}
