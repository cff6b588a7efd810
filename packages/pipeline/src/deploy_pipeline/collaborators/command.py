from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Sequence

import structlog

from deploy_pipeline.core import Credentials, monotonic_ms

from .interfaces import TestReport

log = structlog.get_logger(__name__)

CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    timeout_s: float | None = None,
    runner: CommandRunner = subprocess.run,
) -> "subprocess.CompletedProcess[str]":
    """
    Run a command to completion and capture its output. Never raises on a
    non-zero exit; callers decide what a failure means.
    """
    merged = dict(os.environ)
    if env:
        merged.update(env)

    t0 = monotonic_ms()
    proc = runner(
        list(args),
        cwd=str(cwd) if cwd is not None else None,
        env=merged,
        input=input_text,
        capture_output=True,
        text=True,
        timeout=timeout_s,
        check=False,
    )
    log.debug(
        "command.finished",
        args=list(args),
        cwd=str(cwd) if cwd is not None else None,
        returncode=proc.returncode,
        duration_ms=monotonic_ms() - t0,
    )
    return proc


def combined_output(proc: "subprocess.CompletedProcess[str]") -> str:
    parts = [p for p in (proc.stdout, proc.stderr) if p]
    return "\n".join(s.rstrip("\n") for s in parts)


@dataclass(slots=True)
class CommandTestRunner:
    """
    Runs the application's test command inside the source tree. Granted
    credentials are exposed to the command as environment variables.
    """

    command: list[str] = field(default_factory=lambda: ["pytest", "-q"])
    timeout_s: float | None = None
    runner: CommandRunner = subprocess.run

    def run(self, source_tree: Path, *, credentials: Credentials) -> TestReport:
        source_tree = Path(source_tree)
        if not source_tree.is_dir():
            return TestReport(
                passed=False, log=f"Source tree not found: {source_tree}", returncode=None
            )
        try:
            proc = run_command(
                self.command,
                cwd=source_tree,
                env=credentials.as_env(),
                timeout_s=self.timeout_s,
                runner=self.runner,
            )
        except FileNotFoundError as e:
            return TestReport(passed=False, log=f"Test command not found: {e}")
        except subprocess.TimeoutExpired as e:
            return TestReport(
                passed=False, log=f"Test command timed out after {e.timeout}s"
            )
        return TestReport(
            passed=proc.returncode == 0,
            log=combined_output(proc),
            returncode=proc.returncode,
        )
