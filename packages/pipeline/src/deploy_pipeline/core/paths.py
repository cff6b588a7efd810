from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

_UNSAFE = re.compile(r"[^A-Za-z0-9_.\-]")


def safe_name(value: str) -> str:
    """Make a stage or environment name usable as a single path component."""
    cleaned = _UNSAFE.sub("_", value.strip())
    if not cleaned or cleaned in {".", ".."}:
        raise ValueError(f"Cannot derive a path component from {value!r}")
    return cleaned


@dataclass(frozen=True, slots=True)
class StateLayout:
    """
    Canonical path layout for persisted pipeline state:

      {root}/runs/{run_id}/transitions.jsonl
      {root}/runs/{run_id}/events.jsonl
      {root}/runs/{run_id}/run_record.json
      {root}/artifacts/{stage}.jsonl
      {root}/local/...            (local backend state)
    """

    root: Path

    def runs_root(self) -> Path:
        return self.root / "runs"

    def artifacts_root(self) -> Path:
        return self.root / "artifacts"

    def local_root(self) -> Path:
        return self.root / "local"

    def run_dir(self, run_id: str) -> Path:
        return self.runs_root() / safe_name(run_id)

    def transitions_jsonl(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "transitions.jsonl"

    def events_jsonl(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "events.jsonl"

    def run_record_json(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "run_record.json"

    def publish_log(self, stage: str) -> Path:
        return self.artifacts_root() / f"{safe_name(stage)}.jsonl"

    def ensure_dirs(self) -> None:
        for p in (self.runs_root(), self.artifacts_root()):
            p.mkdir(parents=True, exist_ok=True)
