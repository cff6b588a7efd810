from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deploy_pipeline.app import Pipeline, build_pipeline
from deploy_pipeline.core import (
    Credentials,
    DefinitionError,
    GraphError,
    ProvisionError,
    RunNotFound,
    Settings,
    configure_logging,
    get_logger,
    load_settings,
)
from deploy_pipeline.pipeline import (
    RevisionPushed,
    RunRecord,
    RunStore,
    StageKind,
    exit_code_for,
)
from deploy_pipeline.stages import ProvisionStage

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2

_OUTCOME_STYLE = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "yellow",
    "cancelled": "yellow",
    "running": "cyan",
    "pending": "dim",
}


def _styled(value: str) -> str:
    style = _OUTCOME_STYLE.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--state-root", default=None, help="Override DEPLOY_PIPELINE_STATE_ROOT")
    p.add_argument(
        "--definition",
        default=None,
        help="Pipeline definition JSON. If omitted, the built-in definition for the policy is used.",
    )
    p.add_argument(
        "--policy",
        choices=("placeholder", "reorder"),
        default=None,
        help="Bootstrap policy (default from settings)",
    )
    p.add_argument("--environment", default=None, help="Target environment")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="deploy-pipeline")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("run", help="Run the pipeline for a pushed revision")
    _add_common_args(sp)
    sp.add_argument("--revision", required=True, help="Revision identifier (used as image tag)")
    sp.add_argument("--branch", default=None, help="Branch the revision was pushed to")
    sp.add_argument("--repository", default="", help="Repository the push came from")

    sp = sub.add_parser("plan", help="Show execution order and pending infrastructure changes")
    _add_common_args(sp)

    sp = sub.add_parser("validate", help="Validate the pipeline definition and bootstrap policy")
    _add_common_args(sp)

    sp = sub.add_parser("history", help="List recorded runs")
    _add_common_args(sp)
    sp.add_argument("--limit", type=int, default=20)

    sp = sub.add_parser("show", help="Show one run record")
    _add_common_args(sp)
    sp.add_argument("run_id")

    sp = sub.add_parser("latest", help="Latest artifact published by a stage")
    _add_common_args(sp)
    sp.add_argument("stage")

    return p


def _settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.state_root:
        overrides["state_root"] = Path(args.state_root)
    if args.definition:
        overrides["definition_path"] = Path(args.definition)
    if args.policy:
        overrides["bootstrap_policy"] = args.policy
    if args.environment:
        overrides["environment"] = args.environment
    s = load_settings()
    return s.model_copy(update=overrides) if overrides else s


def _stage_table(record: RunRecord) -> Table:
    tbl = Table(title="Stages", show_header=True)
    tbl.add_column("stage")
    tbl.add_column("outcome")
    tbl.add_column("duration")
    tbl.add_column("detail")
    for name in record.stages:
        res = record.results[name]
        detail = ""
        if res.error is not None:
            detail = res.error.message
        elif res.skip_reason:
            detail = res.skip_reason
        elif res.artifact is not None:
            detail = res.artifact.uri
        tbl.add_row(
            name,
            _styled(res.outcome.value),
            f"{res.duration_ms} ms" if res.started_at_utc else "-",
            detail,
        )
    return tbl


def _cmd_run(args: argparse.Namespace, s: Settings, pipeline: Pipeline) -> int:
    event = RevisionPushed(
        revision=args.revision,
        branch=args.branch or s.tracked_branch,
        repository=args.repository,
    )
    orch = pipeline.orchestrator
    console.print(
        Panel.fit(
            Text(
                f"deploy-pipeline - run\nrevision={event.revision}\n"
                f"environment={orch.environment}\npolicy={orch.policy.value}",
                style="bold",
            ),
            title="Run",
        )
    )

    record = pipeline.dispatcher(s.tracked_branch).handle(event)
    if record is None:
        console.print(
            f"[yellow]ignored[/yellow]: branch {event.branch!r} is not {s.tracked_branch!r}"
        )
        return EXIT_OK

    console.print(_stage_table(record))
    tbl = Table(title="Result", show_header=False, box=None)
    tbl.add_row("status", _styled(record.status.value))
    tbl.add_row("run_id", record.run_id)
    tbl.add_row("record", str(orch.store.layout.run_record_json(record.run_id)))
    console.print(tbl)
    return exit_code_for(record.status)


def _cmd_plan(s: Settings, pipeline: Pipeline) -> int:
    orch = pipeline.orchestrator
    graph = orch.graph

    tbl = Table(title=f"Plan ({orch.policy.value})", show_header=True)
    tbl.add_column("level")
    tbl.add_column("stage")
    tbl.add_column("kind")
    tbl.add_column("depends on")
    tbl.add_column("infrastructure")

    for level, names in enumerate(graph.levels()):
        for name in names:
            defn = graph.get(name)
            infra = ""
            if isinstance(defn.executor, ProvisionStage):
                infra = _plan_provision(s, pipeline, name, defn.executor)
            tbl.add_row(
                str(level), name, defn.kind.value, ", ".join(defn.depends_on) or "-", infra
            )
    console.print(tbl)
    return EXIT_OK


def _plan_provision(
    s: Settings, pipeline: Pipeline, name: str, executor: ProvisionStage
) -> str:
    orch = pipeline.orchestrator
    graph = orch.graph
    publishers = [
        n for n in graph.order
        if n in graph.ancestors(name) and graph.get(n).kind == StageKind.publish
    ]
    artifact = orch.store.latest_artifact(publishers[-1]) if publishers else None
    try:
        desired = executor.desired_state(orch.environment, artifact)
        diff = executor.provisioner.plan(
            desired,
            credentials=Credentials.scoped(s.secrets, graph.get(name).secrets),
        )
    except ProvisionError as e:
        return f"[yellow]unknown[/yellow]: {e}"
    if diff.is_noop:
        return "no changes"
    return (
        f"+{diff.to_add} ~{diff.to_change} -{diff.to_destroy}"
        + (f" ({', '.join(diff.details)})" if diff.details else "")
    )


def _cmd_history(args: argparse.Namespace, store: RunStore) -> int:
    tbl = Table(title="Runs", show_header=True)
    for col in ("run_id", "started", "revision", "environment", "policy", "status"):
        tbl.add_column(col)
    for rec in store.list_runs(limit=args.limit):
        tbl.add_row(
            rec.run_id,
            rec.started_at_utc,
            str(rec.trigger.get("revision", "")),
            rec.environment,
            rec.policy,
            _styled(rec.status.value),
        )
    console.print(tbl)
    return EXIT_OK


def _cmd_show(args: argparse.Namespace, store: RunStore) -> int:
    record = store.load(args.run_id)
    head = Table(show_header=False, box=None)
    head.add_row("run_id", record.run_id)
    head.add_row("revision", str(record.trigger.get("revision", "")))
    head.add_row("environment", record.environment)
    head.add_row("policy", record.policy)
    head.add_row("status", _styled(record.status.value))
    head.add_row("started", record.started_at_utc)
    head.add_row("finished", record.finished_at_utc or "-")
    contracts = record.meta.get("contracts") or {}
    head.add_row("schema", str(contracts.get("schema_version", "-")))
    console.print(head)
    console.print(_stage_table(record))

    log_tbl = Table(title="Transitions", show_header=True)
    for col in ("seq", "ts", "stage", "outcome"):
        log_tbl.add_column(col)
    for tr in record.transitions:
        log_tbl.add_row(str(tr.seq), tr.ts_utc, tr.stage, _styled(tr.outcome.value))
    console.print(log_tbl)
    return EXIT_OK


def _cmd_latest(args: argparse.Namespace, store: RunStore) -> int:
    art = store.latest_artifact(args.stage)
    if art is None:
        console.print(f"No artifact published by stage {args.stage!r}")
        return EXIT_FAILED
    console.print(art.uri)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    s = _settings(args)

    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("deploy_pipeline")

    if args.cmd in ("history", "show", "latest"):
        store = RunStore(s.state_root)
        try:
            if args.cmd == "history":
                return _cmd_history(args, store)
            if args.cmd == "show":
                return _cmd_show(args, store)
            return _cmd_latest(args, store)
        except RunNotFound as e:
            console.print(f"[red]{e}[/red]")
            return EXIT_FAILED

    try:
        pipeline = build_pipeline(s, logger=log, policy=args.policy)
    except (GraphError, DefinitionError, ValueError) as e:
        log.error("Pipeline definition rejected", error=str(e), exc_type=type(e).__name__)
        console.print(f"[red]{type(e).__name__}[/red]: {e}")
        return EXIT_INVALID

    if args.cmd == "validate":
        orch = pipeline.orchestrator
        console.print(
            f"[green]valid[/green]: {pipeline.definition.name} "
            f"({len(orch.graph)} stages, policy={orch.policy.value}, "
            f"order={' -> '.join(orch.graph.order)})"
        )
        return EXIT_OK
    if args.cmd == "plan":
        return _cmd_plan(s, pipeline)
    return _cmd_run(args, s, pipeline)


if __name__ == "__main__":
    raise SystemExit(main())
