from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from deploy_pipeline.core import (
    DuplicateArtifactTag,
    RecordSealedError,
    RunNotFound,
    StateLayout,
    append_jsonl,
    atomic_write_json,
    get_logger,
    iter_jsonl,
    parse_utc_iso,
    read_json,
    utc_now_iso,
)
from deploy_pipeline_contracts import validate_run_record_dict, validate_transition_dict

from .record import Journal, RunRecord, StageTransition
from .types import ArtifactReference

log = get_logger(__name__)


class RunStore:
    """
    File-backed persistence for run records and publish logs.

      runs/{run_id}/run.json            header written when the run is created
      runs/{run_id}/transitions.jsonl   one line per stage transition, live
      runs/{run_id}/run_record.json     sealed record, written once
      artifacts/{stage}.jsonl           every artifact a stage published

    Nothing is ever rewritten: transitions and publishes are appended and
    the sealed record is refused if it already exists.
    """

    def __init__(self, root: Path, *, validate: bool = True) -> None:
        self.layout = StateLayout(Path(root))
        self.layout.ensure_dirs()
        self.validate = validate
        self._publish_lock = threading.Lock()

    # --- runs ---------------------------------------------------------------

    def _header_json(self, run_id: str) -> Path:
        return self.layout.run_dir(run_id) / "run.json"

    def journal(self, run_id: str) -> Journal:
        path = self.layout.transitions_jsonl(run_id)

        def _append(tr: StageTransition) -> None:
            obj = tr.to_dict()
            if self.validate:
                validate_transition_dict(obj)
            append_jsonl(path, obj)

        return _append

    def create_run(self, record: RunRecord) -> RunRecord:
        """
        Persist the header of a new run and attach the transition journal.
        A run id can only be created once.
        """
        run_dir = self.layout.run_dir(record.run_id)
        try:
            run_dir.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            raise RecordSealedError(f"Run {record.run_id} already exists") from None

        header = record.to_dict()
        for k in ("transitions", "results", "artifacts", "finished_at_utc", "status"):
            header.pop(k, None)
        atomic_write_json(self._header_json(record.run_id), header)

        record.journal = self.journal(record.run_id)
        return record

    def save_sealed(self, record: RunRecord) -> Path:
        if not record.sealed:
            raise ValueError(f"Run {record.run_id} is not sealed")
        path = self.layout.run_record_json(record.run_id)
        if path.exists():
            raise RecordSealedError(f"Run record {record.run_id} was already written")

        obj = record.to_dict()
        if self.validate:
            validate_run_record_dict(obj)
        atomic_write_json(path, obj)
        return path

    def load(self, run_id: str) -> RunRecord:
        """
        Load a run by id. Runs that never sealed (crash, still running) are
        rebuilt from the header and the transition log.
        """
        sealed = self.layout.run_record_json(run_id)
        if sealed.is_file():
            return RunRecord.from_dict(read_json(sealed))

        header = self._header_json(run_id)
        if not header.is_file():
            raise RunNotFound(f"No run record for run id {run_id}")

        rec = RunRecord.from_dict({**read_json(header), "status": "running"})
        for raw in iter_jsonl(self.layout.transitions_jsonl(run_id)):
            tr = StageTransition.from_dict(raw)
            rec.transitions.append(tr)
            res = rec.results[tr.stage]
            res.outcome = tr.outcome
            res.error = tr.error or res.error
            res.skip_reason = tr.reason or res.skip_reason
            if tr.artifact is not None:
                res.artifact = tr.artifact
                rec.artifacts.append(tr.artifact)
        return rec

    def run_ids(self) -> list[str]:
        root = self.layout.runs_root()
        if not root.is_dir():
            return []
        return sorted(p.name for p in root.iterdir() if (p / "run.json").is_file())

    def list_runs(self, *, limit: int | None = None) -> list[RunRecord]:
        """Runs, most recently started first."""
        records = [self.load(rid) for rid in self.run_ids()]
        records.sort(key=lambda r: (r.started_at_utc, r.run_id), reverse=True)
        return records[:limit] if limit is not None else records

    # --- artifacts ----------------------------------------------------------

    def _all_publishes(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        root = self.layout.artifacts_root()
        if not root.is_dir():
            return out
        for p in sorted(root.glob("*.jsonl")):
            out.extend(iter_jsonl(p))
        return out

    def has_tag(self, location: str, tag: str) -> bool:
        return any(
            e["artifact"]["location"] == location and e["artifact"]["tag"] == tag
            for e in self._all_publishes()
        )

    def record_publish(self, *, run_id: str, stage: str, artifact: ArtifactReference) -> None:
        """
        Append a published artifact to the stage's publish log. A tag may be
        published to a destination only once.
        """
        with self._publish_lock:
            if self.has_tag(artifact.location, artifact.tag):
                raise DuplicateArtifactTag(
                    f"Tag {artifact.tag!r} already published to {artifact.location}"
                )
            append_jsonl(
                self.layout.publish_log(stage),
                {
                    "run_id": run_id,
                    "stage": stage,
                    "recorded_at": utc_now_iso(),
                    "artifact": artifact.to_dict(),
                },
            )
        log.info("Artifact recorded", stage=stage, run_id=run_id, uri=artifact.uri)

    def artifacts(self, stage: str) -> list[ArtifactReference]:
        """Publishes of `stage`, in log order."""
        return [
            ArtifactReference.from_dict(e["artifact"])
            for e in iter_jsonl(self.layout.publish_log(stage))
        ]

    def latest_artifact(self, stage: str) -> ArtifactReference | None:
        """
        Most recent successful publish of `stage`: latest publish timestamp,
        ties broken by log order.
        """
        arts = self.artifacts(stage)
        if not arts:
            return None
        _, _, latest = max(
            (parse_utc_iso(a.published_at), idx, a) for idx, a in enumerate(arts)
        )
        return latest
