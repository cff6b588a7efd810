import json
from pathlib import Path
from typing import Any, Iterator

from .fs import append_line, atomic_write_text


def atomic_write_json(path: Path, obj: Any, *, indent: int = 2) -> None:
    atomic_write_text(path, json.dumps(obj, ensure_ascii=False, indent=indent) + "\n")


def read_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def stable_json_dumps(obj: Any, *, indent: int | None = 2) -> str:
    """
    Deterministic JSON:
      - sort_keys=True
      - ensure_ascii=False
      - stable separators when indent is None
    """
    if indent is None:
        return json.dumps(
            obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")
        )
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, indent=indent)


def append_jsonl(path: Path, obj: Any) -> None:
    append_line(path, json.dumps(obj, ensure_ascii=False))


def iter_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    """
    Yield records from a JSONL file. A missing file yields nothing; a torn
    final line (crash mid-append) is ignored.
    """
    if not path.is_file():
        return
    lines = path.read_text(encoding="utf-8").splitlines()
    last = len(lines) - 1
    for idx, line in enumerate(lines):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            if idx == last:
                return
            raise
