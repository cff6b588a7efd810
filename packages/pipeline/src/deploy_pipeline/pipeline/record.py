from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from deploy_pipeline.core import RecordSealedError, StageError, utc_now_iso

from .stage import StageResult
from .types import ArtifactReference, RunStatus, StageOutcome

_ALLOWED: dict[StageOutcome, frozenset[StageOutcome]] = {
    StageOutcome.pending: frozenset(
        {StageOutcome.running, StageOutcome.skipped}
    ),
    StageOutcome.running: frozenset(
        {StageOutcome.succeeded, StageOutcome.failed}
    ),
}


@dataclass(frozen=True, slots=True)
class StageTransition:
    seq: int
    stage: str
    outcome: StageOutcome
    ts_utc: str
    error: Optional[StageError] = None
    artifact: Optional[ArtifactReference] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "stage": self.stage,
            "outcome": self.outcome.value,
            "ts_utc": self.ts_utc,
            "error": self.error.to_dict() if self.error else None,
            "artifact": self.artifact.to_dict() if self.artifact else None,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageTransition":
        err = data.get("error")
        art = data.get("artifact")
        return cls(
            seq=int(data["seq"]),
            stage=str(data["stage"]),
            outcome=StageOutcome(data["outcome"]),
            ts_utc=str(data["ts_utc"]),
            error=StageError.from_dict(err) if err else None,
            artifact=ArtifactReference.from_dict(art) if art else None,
            reason=data.get("reason"),
        )


Journal = Callable[[StageTransition], None]

ABORTED = "run aborted"


@dataclass(slots=True)
class RunRecord:
    """
    Audit trail of one pipeline run.

    Transitions are append-only and handed to `journal` (if set) as they
    happen, so partial progress survives a crash. Once sealed the record
    rejects every further change with RecordSealedError.
    """

    run_id: str
    trigger: dict[str, Any]
    environment: str
    policy: str
    started_at_utc: str
    stages: dict[str, bool]  # stage name -> required, in execution order

    finished_at_utc: Optional[str] = None
    status: RunStatus = RunStatus.running
    transitions: list[StageTransition] = field(default_factory=list)
    results: dict[str, StageResult] = field(default_factory=dict)
    artifacts: list[ArtifactReference] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    journal: Optional[Journal] = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for name in self.stages:
            self.results.setdefault(
                name, StageResult(stage=name, outcome=StageOutcome.pending)
            )

    @classmethod
    def create(
        cls,
        *,
        run_id: str,
        trigger: dict[str, Any],
        environment: str,
        policy: str,
        stages: dict[str, bool],
        meta: dict[str, Any] | None = None,
        journal: Journal | None = None,
    ) -> "RunRecord":
        return cls(
            run_id=run_id,
            trigger=dict(trigger),
            environment=environment,
            policy=str(policy),
            started_at_utc=utc_now_iso(),
            stages=dict(stages),
            meta=dict(meta or {}),
            journal=journal,
        )

    @property
    def sealed(self) -> bool:
        return self.status != RunStatus.running

    def outcome_of(self, stage: str) -> StageOutcome:
        return self.results[stage].outcome

    def _check_open(self) -> None:
        if self.sealed:
            raise RecordSealedError(
                f"Run record {self.run_id} is sealed ({self.status.value})"
            )

    def _append(
        self,
        stage: str,
        outcome: StageOutcome,
        *,
        error: StageError | None = None,
        artifact: ArtifactReference | None = None,
        reason: str | None = None,
    ) -> StageTransition:
        # caller holds self._lock
        self._check_open()
        if stage not in self.results:
            raise KeyError(f"Stage {stage!r} is not part of run {self.run_id}")

        current = self.results[stage].outcome
        if outcome not in _ALLOWED.get(current, frozenset()):
            raise ValueError(
                f"Illegal transition for stage {stage!r}: {current.value} -> {outcome.value}"
            )

        tr = StageTransition(
            seq=len(self.transitions) + 1,
            stage=stage,
            outcome=outcome,
            ts_utc=utc_now_iso(),
            error=error,
            artifact=artifact,
            reason=reason,
        )
        if self.journal is not None:
            self.journal(tr)
        self.transitions.append(tr)
        return tr

    def mark_running(self, stage: str) -> StageTransition:
        with self._lock:
            tr = self._append(stage, StageOutcome.running)
            res = self.results[stage]
            res.outcome = StageOutcome.running
            res.started_at_utc = tr.ts_utc
            return tr

    def complete(self, result: StageResult) -> StageTransition:
        """Record the terminal outcome of a stage that ran."""
        with self._lock:
            tr = self._append(
                result.stage,
                result.outcome,
                error=result.error,
                artifact=result.artifact,
            )
            self.results[result.stage] = result
            if result.artifact is not None:
                self.artifacts.append(result.artifact)
            return tr

    def skip(self, stage: str, reason: str) -> StageTransition:
        with self._lock:
            tr = self._append(stage, StageOutcome.skipped, reason=reason)
            res = self.results[stage]
            res.outcome = StageOutcome.skipped
            res.finished_at_utc = tr.ts_utc
            res.skip_reason = reason
            return tr

    def abort(self, error: StageError) -> list[StageTransition]:
        """
        Finish every stage left open when the run itself broke: running
        stages fail with `error`, pending ones are skipped. The journal is
        detached first; the sealed record carries these transitions.
        """
        with self._lock:
            self._check_open()
            self.journal = None
            out: list[StageTransition] = []
            for name, res in self.results.items():
                if res.outcome == StageOutcome.running:
                    tr = self._append(name, StageOutcome.failed, error=error)
                    res.outcome = StageOutcome.failed
                    res.error = error
                elif res.outcome == StageOutcome.pending:
                    tr = self._append(name, StageOutcome.skipped, reason=ABORTED)
                    res.outcome = StageOutcome.skipped
                    res.skip_reason = ABORTED
                else:
                    continue
                res.finished_at_utc = tr.ts_utc
                out.append(tr)
            self.meta["abort"] = error.to_dict()
            return out

    def seal(self, *, cancelled: bool = False, aborted: bool = False) -> RunStatus:
        """
        Close the record. An aborted run is `failed` and a cancelled one is
        `cancelled`, whatever its stages did; otherwise the run succeeded
        only if every required stage succeeded.
        """
        with self._lock:
            self._check_open()
            unfinished = [
                n for n, r in self.results.items() if not r.outcome.terminal
            ]
            if unfinished:
                raise ValueError(
                    f"Cannot seal run {self.run_id}; stages not finished: {unfinished}"
                )

            ok = all(
                self.results[n].outcome == StageOutcome.succeeded
                for n, required in self.stages.items()
                if required
            )
            if aborted:
                status = RunStatus.failed
            elif cancelled:
                status = RunStatus.cancelled
            elif ok:
                status = RunStatus.succeeded
            else:
                status = RunStatus.failed

            self.finished_at_utc = utc_now_iso()
            self.status = status
            return status

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": dict(self.trigger),
            "environment": self.environment,
            "policy": self.policy,
            "status": self.status.value,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "stages": [
                {"name": n, "required": req} for n, req in self.stages.items()
            ],
            "transitions": [t.to_dict() for t in self.transitions],
            "results": [self.results[n].to_dict() for n in self.stages],
            "artifacts": [a.to_dict() for a in self.artifacts],
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        results = [StageResult.from_dict(r) for r in data.get("results") or []]
        return cls(
            run_id=str(data["run_id"]),
            trigger=dict(data.get("trigger") or {}),
            environment=str(data["environment"]),
            policy=str(data["policy"]),
            started_at_utc=str(data["started_at_utc"]),
            stages={str(s["name"]): bool(s["required"]) for s in data["stages"]},
            finished_at_utc=data.get("finished_at_utc"),
            status=RunStatus(data["status"]),
            transitions=[
                StageTransition.from_dict(t) for t in data.get("transitions") or []
            ],
            results={r.stage: r for r in results},
            artifacts=[
                ArtifactReference.from_dict(a) for a in data.get("artifacts") or []
            ],
            meta=dict(data.get("meta") or {}),
        )
