from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from pydantic import SecretStr

from deploy_pipeline.core import Credentials, ILogger

from .events import EventSink, EventType, make_event
from .types import ArtifactReference, BootstrapPolicy, RevisionPushed


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    run_root: Path
    environment: str
    trigger: RevisionPushed
    policy: BootstrapPolicy
    logger: ILogger
    events: EventSink
    secrets: Mapping[str, SecretStr] = field(default_factory=dict)

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def emit(self, event: EventType | str, *, stage: str | None = None, **kw: Any) -> None:
        # Keep event chatter at debug level to leave console logs readable.
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.events.emit(
            make_event(event_type=event_value, run_id=self.run_id, stage=stage, **kw)
        )
        self.logger.debug(event_value, event_type=event_value, stage=stage, **kw)

    def credentials_for(self, names: tuple[str, ...] | list[str]) -> Credentials:
        return Credentials.scoped(self.secrets, names)


@dataclass(frozen=True, slots=True)
class StageContext:
    """
    What a stage executor sees: its run, and only the artifacts and outputs
    of upstream stages that succeeded.
    """

    run: RunContext
    stage: str
    artifacts: Mapping[str, ArtifactReference]
    outputs: Mapping[str, Mapping[str, str]]
    credentials: Credentials
    logger: ILogger

    @property
    def environment(self) -> str:
        return self.run.environment

    @property
    def trigger(self) -> RevisionPushed:
        return self.run.trigger

    @property
    def policy(self) -> BootstrapPolicy:
        return self.run.policy

    def emit(self, event: EventType | str, **kw: Any) -> None:
        self.run.emit(event, stage=self.stage, **kw)

    def artifact(self, stage: str | None = None) -> ArtifactReference:
        """
        Return the artifact of `stage`, or the single upstream artifact when
        no stage is named.
        """
        if stage is not None:
            try:
                return self.artifacts[stage]
            except KeyError:
                raise KeyError(
                    f"Stage {self.stage!r} has no artifact from upstream {stage!r}"
                ) from None
        if len(self.artifacts) != 1:
            raise KeyError(
                f"Stage {self.stage!r} expected exactly one upstream artifact, "
                f"found {sorted(self.artifacts)}"
            )
        return next(iter(self.artifacts.values()))

    def optional_artifact(self) -> ArtifactReference | None:
        if not self.artifacts:
            return None
        return self.artifact()

    def output(self, key: str, *, stage: str | None = None) -> str:
        """
        Look up an upstream output. Without `stage`, the key must be produced
        by exactly one upstream stage.
        """
        if stage is not None:
            try:
                return self.outputs[stage][key]
            except KeyError:
                raise KeyError(
                    f"Stage {self.stage!r} has no output {key!r} from upstream {stage!r}"
                ) from None

        found = [(name, out[key]) for name, out in self.outputs.items() if key in out]
        if not found:
            raise KeyError(f"No upstream of stage {self.stage!r} produced output {key!r}")
        if len(found) > 1:
            raise KeyError(
                f"Output {key!r} is produced by several upstreams of {self.stage!r}: "
                f"{sorted(n for n, _ in found)}"
            )
        return found[0][1]
