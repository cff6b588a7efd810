import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

# Never part of an image build context fingerprint.
_IGNORED_DIRS = frozenset({".git", "__pycache__", ".venv", ".pytest_cache", "_state"})


@dataclass(frozen=True)
class FileDigest:
    sha256: str
    bytes: int


def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()


def sha256_file(path: Path, *, chunk_bytes: int = 1024 * 1024) -> FileDigest:
    h = hashlib.sha256()
    total = 0
    with path.open("rb") as f:
        while True:
            b = f.read(chunk_bytes)
            if not b:
                break
            h.update(b)
            total += len(b)

    return FileDigest(sha256=h.hexdigest(), bytes=total)


def fingerprint_obj(obj: Any) -> str:
    """
    Content hash of a JSON-serializable object, independent of key order.
    """
    canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return sha256_bytes(canonical.encode("utf-8"))


def _iter_tree(root: Path) -> Iterable[Path]:
    for p in sorted(root.rglob("*")):
        if any(part in _IGNORED_DIRS for part in p.relative_to(root).parts):
            continue
        if p.is_file():
            yield p


def sha256_tree(root: Path) -> FileDigest:
    """
    Deterministic digest of a directory: relative posix paths and file
    digests, in sorted path order.
    """
    root = Path(root)
    h = hashlib.sha256()
    total = 0
    for p in _iter_tree(root):
        d = sha256_file(p)
        h.update(p.relative_to(root).as_posix().encode("utf-8"))
        h.update(b"\0")
        h.update(d.sha256.encode("ascii"))
        h.update(b"\n")
        total += d.bytes
    return FileDigest(sha256=h.hexdigest(), bytes=total)
