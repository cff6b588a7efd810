from .config import DEFAULT_PLACEHOLDER_IMAGE, Settings, load_settings
from .credentials import Credentials
from .errors import (
    AmbiguousBootstrap,
    BuildError,
    CycleDetected,
    DefinitionError,
    DuplicateArtifactTag,
    DuplicateStage,
    GraphError,
    PipelineError,
    ProvisionError,
    PublishError,
    RecordSealedError,
    RunNotFound,
    StageError,
    StageExecutionError,
    TestFailure,
    UnknownDependency,
    UpdateError,
    stage_error_from_exc,
)
from .fs import append_line, atomic_write_text, relpath_posix, safe_unlink
from .hashing import FileDigest, fingerprint_obj, sha256_bytes, sha256_file, sha256_tree
from .json import append_jsonl, atomic_write_json, iter_jsonl, read_json, stable_json_dumps
from .logging import ILogger, configure_logging, get_logger
from .paths import StateLayout, safe_name
from .provenance import RunProvenance, Timer, new_run_id
from .time import monotonic_ms, parse_utc_iso, utc_now, utc_now_iso


__all__ = [
    "DEFAULT_PLACEHOLDER_IMAGE",
    "Settings",
    "load_settings",
    "Credentials",
    "PipelineError",
    "GraphError",
    "CycleDetected",
    "UnknownDependency",
    "DuplicateStage",
    "AmbiguousBootstrap",
    "StageError",
    "StageExecutionError",
    "TestFailure",
    "ProvisionError",
    "BuildError",
    "PublishError",
    "UpdateError",
    "RecordSealedError",
    "RunNotFound",
    "DuplicateArtifactTag",
    "DefinitionError",
    "stage_error_from_exc",
    "append_line",
    "atomic_write_text",
    "relpath_posix",
    "safe_unlink",
    "FileDigest",
    "fingerprint_obj",
    "sha256_bytes",
    "sha256_file",
    "sha256_tree",
    "append_jsonl",
    "atomic_write_json",
    "iter_jsonl",
    "read_json",
    "stable_json_dumps",
    "ILogger",
    "configure_logging",
    "get_logger",
    "StateLayout",
    "safe_name",
    "RunProvenance",
    "Timer",
    "new_run_id",
    "monotonic_ms",
    "parse_utc_iso",
    "utc_now",
    "utc_now_iso",
]
