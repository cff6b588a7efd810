from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Any, Optional


class PipelineError(RuntimeError):
    """Base error"""


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    exc_type: str
    message: str
    traceback: str
    detail: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "exc_type": self.exc_type,
            "message": self.message,
            "traceback": self.traceback,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageError":
        return cls(
            exc_type=str(data["exc_type"]),
            message=str(data["message"]),
            traceback=str(data.get("traceback") or ""),
            detail=data.get("detail"),
        )


def stage_error_from_exc(exc: BaseException) -> StageError:
    return StageError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback=traceback.format_exc(),
        detail=getattr(exc, "detail", None),
    )


# --- graph construction -----------------------------------------------------


class GraphError(PipelineError):
    """
    Pipeline graph could not be constructed. Raised before any run record
    exists, so nothing is persisted.
    """


class CycleDetected(GraphError):
    def __init__(self, stages: list[str]) -> None:
        super().__init__(
            f"Cycle detected in stage dependency graph involving: {', '.join(stages)}"
        )
        self.stages = stages


class UnknownDependency(GraphError):
    def __init__(self, stage: str, dependency: str) -> None:
        super().__init__(f"Stage '{stage}' depends on unknown stage '{dependency}'")
        self.stage = stage
        self.dependency = dependency


class DuplicateStage(GraphError):
    """Two stage definitions share a name"""


class AmbiguousBootstrap(GraphError):
    """
    A compute-service stage could come up pointing at an image that has not
    been published yet.
    """

    def __init__(self, stage: str, reason: str) -> None:
        super().__init__(f"Ambiguous bootstrap for stage '{stage}': {reason}")
        self.stage = stage
        self.reason = reason


# --- stage execution --------------------------------------------------------


class StageExecutionError(PipelineError):
    """
    Failure reported by an external collaborator. Local to the stage that
    raised it; never retried automatically.
    """

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class TestFailure(StageExecutionError):
    """Application test suite did not pass"""

    __test__ = False


class ProvisionError(StageExecutionError):
    """Provisioner could not reach the desired state"""


class BuildError(StageExecutionError):
    """Image build failed"""


class PublishError(StageExecutionError):
    """Image push to the registry failed"""


class UpdateError(StageExecutionError):
    """Compute platform refused or failed the service update"""


# --- persistence / definitions ----------------------------------------------


class RecordSealedError(PipelineError):
    """Attempt to append to a run record that reached a terminal state"""


class RunNotFound(PipelineError):
    """No run record exists for the requested run id"""


class DuplicateArtifactTag(PipelineError):
    """The tag was already published to this destination"""


class DefinitionError(PipelineError):
    """Pipeline definition file is missing or invalid"""
