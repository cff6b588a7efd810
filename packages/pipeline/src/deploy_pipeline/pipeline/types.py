from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

from deploy_pipeline.core import utc_now_iso


class StageOutcome(StrEnum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StageOutcome.succeeded, StageOutcome.failed, StageOutcome.skipped)


class StageKind(StrEnum):
    test = "test"
    provision = "provision"
    publish = "publish"
    update_service = "update_service"
    task = "task"


class BootstrapPolicy(StrEnum):
    """
    How the first deploy avoids a service pointing at an unpublished image.

    placeholder: provision the service on a known-good placeholder image and
      repoint it from an update_service stage after every publish.
    reorder: provision only the registry before publishing; the service
      stage depends on the published artifact.
    """

    placeholder = "placeholder"
    reorder = "reorder"


class RunStatus(StrEnum):
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


@dataclass(frozen=True, slots=True)
class ArtifactReference:
    """
    A published image: where it lives and which tag it was pushed under.

    Created by a publish stage, then only ever read.
    """

    name: str
    location: str
    tag: str
    published_at: str
    digest: Optional[str] = None

    @property
    def uri(self) -> str:
        return f"{self.location}:{self.tag}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "location": self.location,
            "tag": self.tag,
            "published_at": self.published_at,
            "digest": self.digest,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArtifactReference":
        return cls(
            name=str(data["name"]),
            location=str(data["location"]),
            tag=str(data["tag"]),
            published_at=str(data["published_at"]),
            digest=data.get("digest"),
        )


@dataclass(frozen=True, slots=True)
class RevisionPushed:
    """
    The only trigger: a revision was pushed to a branch.
    """

    revision: str
    branch: str
    repository: str = ""
    pushed_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "revision_pushed",
            "revision": self.revision,
            "branch": self.branch,
            "repository": self.repository,
            "pushed_at": self.pushed_at,
        }


@dataclass(frozen=True, slots=True)
class Event:
    """
    Structured event emitted by the pipeline.
    """

    type: str
    ts_utc: str
    run_id: str
    stage: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
