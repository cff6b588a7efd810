from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

import structlog

from deploy_pipeline.core import Credentials, ProvisionError, atomic_write_json

from .command import CommandRunner, combined_output, run_command
from .interfaces import ApplyResult, DesiredState, PlanDiff

log = structlog.get_logger(__name__)

_PLAN_SUMMARY = re.compile(
    r"Plan:\s+(?P<add>\d+)\s+to add,\s+(?P<change>\d+)\s+to change,\s+(?P<destroy>\d+)\s+to destroy"
)
_RESOURCE_LINE = re.compile(r"^\s*#\s+(?P<addr>\S+)\s+will be (?P<action>created|updated in-place|destroyed|replaced)")

# `terraform plan -detailed-exitcode`: 0 no changes, 1 error, 2 changes present
_NO_CHANGES, _HAS_CHANGES = 0, 2

VARS_FILE = "deploy_pipeline.auto.tfvars.json"


def parse_plan_output(text: str) -> PlanDiff:
    m = _PLAN_SUMMARY.search(text)
    details = [
        f"{mm.group('action')}: {mm.group('addr')}"
        for mm in (_RESOURCE_LINE.match(line) for line in text.splitlines())
        if mm
    ]
    if not m:
        return PlanDiff(details=details)
    return PlanDiff(
        to_add=int(m.group("add")),
        to_change=int(m.group("change")),
        to_destroy=int(m.group("destroy")),
        details=details,
    )


@dataclass(slots=True)
class TerraformProvisioner:
    """
    Drives the terraform CLI in `workdir`. The desired state is written as an
    auto-loaded tfvars file; each declared resource maps to a module of the
    same name, targeted so one stage never touches another stage's resources.
    Granted credentials are passed as environment variables.
    """

    workdir: Path
    terraform_bin: str = "terraform"
    timeout_s: float | None = None
    runner: CommandRunner = subprocess.run

    def _tf(self, *args: str, credentials: Credentials) -> "subprocess.CompletedProcess[str]":
        cmd = [self.terraform_bin, *args]
        try:
            return run_command(
                cmd,
                cwd=Path(self.workdir),
                env={"TF_IN_AUTOMATION": "1", **credentials.as_env()},
                timeout_s=self.timeout_s,
                runner=self.runner,
            )
        except FileNotFoundError as e:
            raise ProvisionError(f"terraform binary not found: {self.terraform_bin}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisionError(
                f"terraform {args[0]} timed out after {e.timeout}s"
            ) from e

    def _prepare(self, desired: DesiredState, credentials: Credentials) -> list[str]:
        workdir = Path(self.workdir)
        if not workdir.is_dir():
            raise ProvisionError(f"Terraform workdir not found: {workdir}")
        atomic_write_json(
            workdir / VARS_FILE,
            {"environment": desired.environment, **desired.resources},
        )
        init = self._tf("init", "-input=false", "-no-color", credentials=credentials)
        if init.returncode != 0:
            raise ProvisionError("terraform init failed", detail=combined_output(init))
        return [f"-target=module.{name}" for name in sorted(desired.resources)]

    def plan(self, desired: DesiredState, *, credentials: Credentials) -> PlanDiff:
        targets = self._prepare(desired, credentials)
        proc = self._tf(
            "plan", "-input=false", "-no-color", "-detailed-exitcode", *targets,
            credentials=credentials,
        )
        if proc.returncode not in (_NO_CHANGES, _HAS_CHANGES):
            raise ProvisionError("terraform plan failed", detail=combined_output(proc))
        if proc.returncode == _NO_CHANGES:
            return PlanDiff()
        return parse_plan_output(proc.stdout)

    def apply(self, desired: DesiredState, *, credentials: Credentials) -> ApplyResult:
        targets = self._prepare(desired, credentials)
        planfile = "deploy_pipeline.tfplan"
        proc = self._tf(
            "plan", "-input=false", "-no-color", "-detailed-exitcode",
            f"-out={planfile}", *targets,
            credentials=credentials,
        )
        if proc.returncode not in (_NO_CHANGES, _HAS_CHANGES):
            raise ProvisionError("terraform plan failed", detail=combined_output(proc))

        changes = 0
        if proc.returncode == _HAS_CHANGES:
            # exit code 2 guarantees at least one change even if the summary is missing
            changes = parse_plan_output(proc.stdout).changes or 1
            applied = self._tf(
                "apply", "-input=false", "-no-color", "-auto-approve", planfile,
                credentials=credentials,
            )
            if applied.returncode != 0:
                raise ProvisionError(
                    "terraform apply failed", detail=combined_output(applied)
                )

        out = self._tf("output", "-json", credentials=credentials)
        if out.returncode != 0:
            raise ProvisionError("terraform output failed", detail=combined_output(out))
        try:
            raw = json.loads(out.stdout or "{}")
        except json.JSONDecodeError as e:
            raise ProvisionError("terraform output is not JSON", detail=out.stdout) from e

        outputs = {
            k: v["value"] if isinstance(v["value"], str) else json.dumps(v["value"])
            for k, v in raw.items()
            if not v.get("sensitive")
        }
        log.info(
            "terraform.applied",
            environment=desired.environment,
            changes=changes,
            outputs=sorted(outputs),
        )
        return ApplyResult(
            outputs=outputs,
            status="applied" if changes else "unchanged",
            changes=changes,
        )
