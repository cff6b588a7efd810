from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from deploy_pipeline.collaborators.command import CommandRunner, combined_output, run_command
from deploy_pipeline.core import StageExecutionError
from deploy_pipeline.pipeline import StageContext


@dataclass(slots=True)
class CommandTask:
    """Arbitrary command run in the source tree, e.g. a database migration."""

    command: list[str]
    cwd: Path
    timeout_s: float | None = None
    runner: CommandRunner = field(default=subprocess.run)

    def run(self, ctx: StageContext) -> dict[str, str]:
        env = {
            **ctx.credentials.as_env(),
            "DEPLOY_REVISION": ctx.trigger.revision,
            "DEPLOY_ENVIRONMENT": ctx.environment,
        }
        try:
            proc = run_command(
                self.command,
                cwd=Path(self.cwd),
                env=env,
                timeout_s=self.timeout_s,
                runner=self.runner,
            )
        except FileNotFoundError as e:
            raise StageExecutionError(f"Command not found: {self.command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise StageExecutionError(
                f"Command timed out after {e.timeout}s: {self.command[0]}"
            ) from e

        if proc.returncode != 0:
            raise StageExecutionError(
                f"Command exited with {proc.returncode}: {' '.join(self.command)}",
                detail=combined_output(proc)[-4000:],
            )
        return {"returncode": str(proc.returncode)}
