from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Sequence

from pydantic import SecretStr

from deploy_pipeline.core import (
    DuplicateArtifactTag,
    ILogger,
    RunProvenance,
    Settings,
    configure_logging,
    get_logger,
    monotonic_ms,
    new_run_id,
    stage_error_from_exc,
)
from deploy_pipeline_contracts import get_contract_version_info

from .bootstrap import validate_bootstrap
from .context import RunContext, StageContext
from .events import EventSink, EventType
from .graph import PipelineGraph, build_graph
from .locks import ProvisioningLocks, default_locks
from .record import RunRecord
from .stage import StageDefinition, StageResult, execute_stage, format_duration_ms
from .store import RunStore
from .types import (
    ArtifactReference,
    BootstrapPolicy,
    RevisionPushed,
    RunStatus,
    StageKind,
    StageOutcome,
)

CANCELLED = "cancelled"


@dataclass(slots=True)
class OrchestratorConfig:
    environment: str = "production"
    policy: BootstrapPolicy = BootstrapPolicy.placeholder
    max_parallel_stages: int = 4
    state_root: Path = Path("_state")

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorConfig":
        return cls(
            environment=settings.environment,
            policy=BootstrapPolicy(settings.bootstrap_policy),
            max_parallel_stages=settings.max_parallel_stages,
            state_root=settings.state_root,
        )


class CancelToken:
    """
    Cooperative cancellation for one run. Stages already executing finish;
    nothing new starts once the token is set.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = CANCELLED) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def skip_reason(self) -> str:
        """What unstarted stages of a cancelled run are recorded with."""
        if self.reason in (None, CANCELLED):
            return CANCELLED
        return f"{CANCELLED} ({self.reason})"

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def default_logger() -> ILogger:
    """
    Provide a structlog BoundLogger that satisfies ILogger.
    """
    configure_logging()
    return get_logger("deploy_pipeline")


def exit_code_for(status: RunStatus) -> int:
    return 0 if status == RunStatus.succeeded else 1


class Orchestrator:
    """
    Drives one pipeline graph to completion per trigger.

    The graph is built and bootstrap-validated on construction, so a bad
    definition fails before any run record exists.
    """

    def __init__(
        self,
        *,
        definitions: Sequence[StageDefinition],
        cfg: OrchestratorConfig | None = None,
        store: RunStore | None = None,
        locks: ProvisioningLocks | None = None,
        logger: ILogger | None = None,
        secrets: Mapping[str, SecretStr] | None = None,
    ) -> None:
        self.cfg = cfg or OrchestratorConfig()
        self.cfg.policy = BootstrapPolicy(self.cfg.policy)
        if self.cfg.max_parallel_stages < 1:
            raise ValueError("max_parallel_stages must be >= 1")

        self.graph: PipelineGraph = build_graph(definitions)
        validate_bootstrap(self.graph, self.cfg.policy)

        self.store = store or RunStore(self.cfg.state_root)
        self.locks = locks or default_locks()
        self.logger: ILogger = logger or default_logger()
        self.secrets: Mapping[str, SecretStr] = dict(secrets or {})

    @property
    def policy(self) -> BootstrapPolicy:
        return self.cfg.policy

    @property
    def environment(self) -> str:
        return self.cfg.environment

    def describe(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "policy": self.policy.value,
            **self.graph.describe(),
        }

    # --- execution ------------------------------------------------------------

    def run(
        self,
        trigger: RevisionPushed,
        *,
        run_id: str | None = None,
        cancel: CancelToken | None = None,
        meta: dict[str, Any] | None = None,
    ) -> RunRecord:
        """
        Execute every stage in dependency order and return the sealed record.

        Ready stages run concurrently on a bounded thread pool. A stage whose
        upstream failed or was skipped is skipped without being invoked.
        """
        rid = run_id or new_run_id()
        cancel = cancel or CancelToken()
        meta = dict(meta or {})
        meta.setdefault("provenance", RunProvenance().to_dict())
        meta.setdefault("contracts", get_contract_version_info().to_dict())

        record = RunRecord.create(
            run_id=rid,
            trigger=trigger.to_dict(),
            environment=self.environment,
            policy=self.policy.value,
            stages={n: self.graph.get(n).required for n in self.graph.order},
            meta=meta,
        )
        self.store.create_run(record)

        run_root = self.store.layout.run_dir(rid)
        sink = EventSink(self.store.layout.events_jsonl(rid))
        run_logger = self.logger.bind(run_id=rid, environment=self.environment)
        ctx = RunContext(
            run_id=rid,
            run_root=run_root,
            environment=self.environment,
            trigger=trigger,
            policy=self.policy,
            logger=run_logger,
            events=sink,
            secrets=self.secrets,
            meta=meta,
        )

        t0 = monotonic_ms()
        run_logger.info(
            "Pipeline starting",
            revision=trigger.revision,
            branch=trigger.branch,
            policy=self.policy.value,
            stages=list(self.graph.order),
        )
        ctx.emit(
            EventType.RUN_START,
            revision=trigger.revision,
            policy=self.policy.value,
            stages=list(self.graph.order),
        )

        aborted = False
        try:
            try:
                self._drive(ctx, record, cancel)
            except Exception as e:
                aborted = True
                self._abort(ctx, record, e)

            status = record.seal(cancelled=cancel.cancelled, aborted=aborted)
            record_path = self.store.save_sealed(record)
            duration = monotonic_ms() - t0

            ctx.emit(
                EventType.RUN_FINISH,
                status=status.value,
                duration_ms=duration,
                record_json=str(record_path),
            )
        finally:
            sink.close()

        run_logger.info(
            "Run complete",
            status=status.value,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            record=str(record_path),
            artifacts=[a.uri for a in record.artifacts],
        )
        return record

    def _abort(self, ctx: RunContext, record: RunRecord, exc: Exception) -> None:
        err = stage_error_from_exc(exc)
        ctx.logger.exception("Run aborted", error=str(exc), exc_type=err.exc_type)
        ctx.emit(EventType.RUN_ABORTED, exc_type=err.exc_type, message=err.message)
        for tr in record.abort(err):
            if tr.outcome == StageOutcome.skipped:
                ctx.emit(EventType.STAGE_SKIPPED, stage=tr.stage, reason=tr.reason)
            else:
                ctx.emit(EventType.STAGE_FAILED, stage=tr.stage, message=err.message)

    def _drive(self, ctx: RunContext, record: RunRecord, cancel: CancelToken) -> None:
        pending: list[str] = list(self.graph.order)
        running: dict[Future[StageResult | None], str] = {}
        total = len(self.graph)
        started = 0
        cancel_noted = False

        with ThreadPoolExecutor(
            max_workers=self.cfg.max_parallel_stages, thread_name_prefix="stage"
        ) as pool:
            try:
                while True:
                    if cancel.cancelled and not cancel_noted:
                        cancel_noted = True
                        ctx.emit(EventType.RUN_CANCEL_REQUESTED, reason=cancel.reason)
                        ctx.logger.warning("Cancellation requested", reason=cancel.reason)

                    progressed = True
                    while progressed:
                        progressed = False
                        for name in list(pending):
                            reason = self._skip_reason(record, name, cancel)
                            if reason is not None:
                                pending.remove(name)
                                self._skip(ctx, record, name, reason)
                                progressed = True
                                continue

                            ups = self.graph.upstream(name)
                            if all(record.outcome_of(u) == StageOutcome.succeeded for u in ups):
                                pending.remove(name)
                                started += 1
                                sctx = self._stage_context(ctx, record, name)
                                fut = pool.submit(
                                    self._execute, record, sctx, cancel, started, total
                                )
                                running[fut] = name

                    if not running:
                        break

                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                    for fut in sorted(done, key=lambda f: self.graph.order.index(running[f])):
                        name = running.pop(fut)
                        result = fut.result()
                        if result is None:
                            # never started: cancelled while queued
                            self._skip(ctx, record, name, cancel.skip_reason)
                            continue
                        self._complete(ctx, record, result)
            except BaseException:
                # queued stages must not start once the run is broken
                pool.shutdown(wait=True, cancel_futures=True)
                raise

        if pending:
            raise RuntimeError(f"Stages left unscheduled: {pending}")

    def _skip_reason(
        self, record: RunRecord, name: str, cancel: CancelToken
    ) -> str | None:
        if cancel.cancelled:
            return cancel.skip_reason
        for up in self.graph.upstream(name):
            outcome = record.outcome_of(up)
            if outcome in (StageOutcome.failed, StageOutcome.skipped):
                return f"upstream '{up}' {outcome.value}"
        return None

    def _skip(self, ctx: RunContext, record: RunRecord, name: str, reason: str) -> None:
        record.skip(name, reason)
        ctx.emit(EventType.STAGE_SKIPPED, stage=name, reason=reason)
        ctx.stage_logger(name).warning("Stage skipped", reason=reason)

    def _stage_context(
        self, ctx: RunContext, record: RunRecord, name: str
    ) -> StageContext:
        definition = self.graph.get(name)
        ancestors = [n for n in self.graph.order if n in self.graph.ancestors(name)]
        artifacts: dict[str, ArtifactReference] = {}
        outputs: dict[str, dict[str, str]] = {}
        for up in ancestors:
            res = record.results[up]
            if res.outcome != StageOutcome.succeeded:
                continue
            if res.artifact is not None:
                artifacts[up] = res.artifact
            outputs[up] = dict(res.outputs)

        return StageContext(
            run=ctx,
            stage=name,
            artifacts=artifacts,
            outputs=outputs,
            credentials=ctx.credentials_for(definition.secrets),
            logger=ctx.stage_logger(name),
        )

    def _execute(
        self,
        record: RunRecord,
        sctx: StageContext,
        cancel: CancelToken,
        index: int,
        total: int,
    ) -> StageResult | None:
        definition = self.graph.get(sctx.stage)
        if cancel.cancelled:
            return None

        if definition.kind != StageKind.provision:
            record.mark_running(sctx.stage)
            return execute_stage(ctx=sctx, definition=definition, index=index, total=total)

        env = self.environment
        sctx.emit(EventType.LOCK_WAIT, environment=env)
        with self.locks.hold(env):
            sctx.emit(EventType.LOCK_ACQUIRED, environment=env)
            try:
                # cancellation may have arrived while another run held the lock
                if cancel.cancelled:
                    return None
                record.mark_running(sctx.stage)
                return execute_stage(
                    ctx=sctx, definition=definition, index=index, total=total
                )
            finally:
                sctx.emit(EventType.LOCK_RELEASED, environment=env)

    def _complete(self, ctx: RunContext, record: RunRecord, result: StageResult) -> None:
        if result.outcome == StageOutcome.succeeded and result.artifact is not None:
            try:
                self.store.record_publish(
                    run_id=record.run_id, stage=result.stage, artifact=result.artifact
                )
            except DuplicateArtifactTag as e:
                ctx.stage_logger(result.stage).error("Publish rejected", error=str(e))
                result = replace(
                    result,
                    outcome=StageOutcome.failed,
                    artifact=None,
                    error=stage_error_from_exc(e),
                )
        record.complete(result)
