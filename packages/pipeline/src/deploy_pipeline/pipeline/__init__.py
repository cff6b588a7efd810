from .bootstrap import validate_bootstrap
from .context import RunContext, StageContext
from .dispatch import Dispatcher
from .events import EventSink, EventType, make_event
from .graph import PipelineGraph, build_graph
from .locks import ProvisioningLocks, default_locks
from .record import RunRecord, StageTransition
from .runner import (
    CancelToken,
    Orchestrator,
    OrchestratorConfig,
    default_logger,
    exit_code_for,
)
from .stage import (
    FunctionStage,
    StageDefinition,
    StageExecutor,
    StageResult,
    execute_stage,
    format_duration_ms,
    stage,
)
from .store import RunStore
from .types import (
    ArtifactReference,
    BootstrapPolicy,
    Event,
    RevisionPushed,
    RunStatus,
    StageKind,
    StageOutcome,
)

__all__ = [
    "ArtifactReference",
    "BootstrapPolicy",
    "CancelToken",
    "Dispatcher",
    "Event",
    "EventSink",
    "EventType",
    "FunctionStage",
    "Orchestrator",
    "OrchestratorConfig",
    "PipelineGraph",
    "ProvisioningLocks",
    "RevisionPushed",
    "RunContext",
    "RunRecord",
    "RunStatus",
    "RunStore",
    "StageContext",
    "StageDefinition",
    "StageExecutor",
    "StageKind",
    "StageOutcome",
    "StageResult",
    "StageTransition",
    "build_graph",
    "default_locks",
    "default_logger",
    "execute_stage",
    "exit_code_for",
    "format_duration_ms",
    "make_event",
    "stage",
    "validate_bootstrap",
]
