from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from deploy_pipeline.core import (
    StageError,
    StageExecutionError,
    monotonic_ms,
    parse_utc_iso,
    stage_error_from_exc,
    utc_now_iso,
)

from .context import StageContext
from .events import EventType
from .types import ArtifactReference, StageKind, StageOutcome


def format_duration_ms(ms: int) -> str:
    """Return a short human-readable duration string."""
    if ms < 1000:
        return f"{ms} ms"
    return f"{ms / 1000:.2f} s"


_ARTIFACT_FIELDS = ("name", "location", "tag", "published_at")


def check_artifact(stage_id: str, artifact: ArtifactReference) -> None:
    """Reject an artifact the run record could not store."""
    empty = [f for f in _ARTIFACT_FIELDS if not getattr(artifact, f)]
    if empty:
        raise ValueError(
            f"Stage {stage_id} returned an artifact with empty {', '.join(empty)}"
        )
    try:
        parse_utc_iso(artifact.published_at)
    except ValueError:
        raise ValueError(
            f"Stage {stage_id} returned an artifact with unparseable "
            f"published_at {artifact.published_at!r}"
        ) from None


class StageExecutor(Protocol):
    def run(self, ctx: StageContext) -> dict[str, Any] | None: ...


StageFn = Callable[[StageContext], dict[str, Any] | None]


@dataclass(slots=True)
class FunctionStage:
    """
    Adapter that turns a plain function into a StageExecutor.
    """

    fn: StageFn

    def run(self, ctx: StageContext) -> dict[str, Any] | None:
        return self.fn(ctx)


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """
    Declaration of one stage. Reused across runs; never holds run state.

    `provisions` names the infrastructure the stage creates ("registry",
    "service", ...). A stage provisioning "service" is a compute-service
    stage and is subject to bootstrap validation.
    """

    name: str
    executor: StageExecutor
    depends_on: tuple[str, ...] = ()
    kind: StageKind = StageKind.task
    provisions: frozenset[str] = frozenset()
    bootstrap_image: Optional[str] = None
    required: bool = True
    secrets: tuple[str, ...] = ()

    @property
    def provisions_service(self) -> bool:
        return "service" in self.provisions

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "depends_on": list(self.depends_on),
            "provisions": sorted(self.provisions),
            "bootstrap_image": self.bootstrap_image,
            "required": self.required,
            "secrets": list(self.secrets),
        }


def stage(
    name: str,
    fn: StageFn,
    *,
    depends_on: tuple[str, ...] | list[str] = (),
    **kw: Any,
) -> StageDefinition:
    """Shorthand for a StageDefinition around a plain function."""
    return StageDefinition(
        name=name, executor=FunctionStage(fn=fn), depends_on=tuple(depends_on), **kw
    )


@dataclass(slots=True)
class StageResult:
    stage: str
    outcome: StageOutcome
    started_at_utc: Optional[str] = None
    finished_at_utc: Optional[str] = None
    duration_ms: int = 0

    outputs: dict[str, str] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    artifact: Optional[ArtifactReference] = None
    error: Optional[StageError] = None
    skip_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "outcome": self.outcome.value,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "outputs": dict(self.outputs),
            "metrics": dict(self.metrics),
            "warnings": list(self.warnings),
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "error": self.error.to_dict() if self.error else None,
            "skip_reason": self.skip_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageResult":
        art = data.get("artifact")
        err = data.get("error")
        return cls(
            stage=str(data["stage"]),
            outcome=StageOutcome(data["outcome"]),
            started_at_utc=data.get("started_at_utc"),
            finished_at_utc=data.get("finished_at_utc"),
            duration_ms=int(data.get("duration_ms") or 0),
            outputs={str(k): str(v) for k, v in (data.get("outputs") or {}).items()},
            metrics=dict(data.get("metrics") or {}),
            warnings=[str(w) for w in data.get("warnings") or []],
            artifact=ArtifactReference.from_dict(art) if art else None,
            error=StageError.from_dict(err) if err else None,
            skip_reason=data.get("skip_reason"),
        )


def execute_stage(
    *,
    ctx: StageContext,
    definition: StageDefinition,
    index: int | None = None,
    total: int | None = None,
) -> StageResult:
    """
    Invoke one stage executor and normalize whatever it returns or raises
    into a StageResult. Never raises for executor failures.

    Executors return a dict (or None). Reserved keys:
      _artifact  ArtifactReference produced by this stage
      _warnings  list of warning strings
      _metrics   dict of numeric metrics
    Every other key is a string output visible to downstream stages.
    """
    stage_id = definition.name
    log = ctx.logger

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    position = f"{index}/{total}" if index is not None and total is not None else None

    ctx.emit(EventType.STAGE_START, kind=definition.kind.value)
    log.info("Stage starting", position=position, kind=definition.kind.value)

    warnings: list[str] = []
    metrics: dict[str, Any] = {}
    artifact: ArtifactReference | None = None

    try:
        out = definition.executor.run(ctx) or {}
        if not isinstance(out, dict):
            raise TypeError(
                f"Stage {stage_id} returned {type(out).__name__}, expected dict or None"
            )
        out = dict(out)

        if "_warnings" in out:
            w = out.pop("_warnings")
            if isinstance(w, list):
                warnings.extend(str(x) for x in w)

        if "_metrics" in out:
            m = out.pop("_metrics")
            if isinstance(m, dict):
                metrics.update(m)

        if "_artifact" in out:
            a = out.pop("_artifact")
            if a is not None and not isinstance(a, ArtifactReference):
                raise TypeError(
                    f"Stage {stage_id} returned _artifact of type {type(a).__name__}"
                )
            if a is not None:
                check_artifact(stage_id, a)
            artifact = a

        outputs = {str(k): str(v) for k, v in out.items() if v is not None}

        for w in warnings:
            ctx.emit(EventType.STAGE_WARN, message=w)
            log.warning(w)

        if metrics:
            ctx.emit(EventType.STAGE_METRICS, metrics=metrics)

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        ctx.emit(
            EventType.STAGE_SUCCESS,
            duration_ms=duration,
            artifact=artifact.uri if artifact else None,
        )
        log_fields: dict[str, object] = {
            "outcome": StageOutcome.succeeded.value,
            "position": position,
            "duration_ms": duration,
            "duration": format_duration_ms(duration),
            "warnings": len(warnings),
            "outputs": sorted(outputs),
        }
        if artifact:
            log_fields["artifact"] = artifact.uri

        log.info("Stage succeeded", **log_fields)

        return StageResult(
            stage=stage_id,
            outcome=StageOutcome.succeeded,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            outputs=outputs,
            metrics=metrics,
            warnings=warnings,
            artifact=artifact,
        )

    except Exception as e:
        err = stage_error_from_exc(e)
        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        ctx.emit(
            EventType.STAGE_FAILED,
            duration_ms=duration,
            exc_type=err.exc_type,
            message=err.message,
            detail=err.detail,
        )
        log.error(
            "Stage failed",
            outcome=StageOutcome.failed.value,
            position=position,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            error=str(e),
            detail=err.detail,
        )
        # Collaborator failures are expected; anything else is a bug worth a traceback.
        if not isinstance(e, StageExecutionError):
            log.exception("Stage exception")

        return StageResult(
            stage=stage_id,
            outcome=StageOutcome.failed,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            metrics=metrics,
            warnings=warnings,
            error=err,
        )
