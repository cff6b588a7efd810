from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

import structlog

from deploy_pipeline.core import BuildError, Credentials, PublishError, utc_now_iso
from deploy_pipeline.pipeline.types import ArtifactReference

from .command import CommandRunner, combined_output, run_command
from .interfaces import Destination

log = structlog.get_logger(__name__)

# Credential names understood by the registry login step.
REGISTRY_USERNAME = "registry_username"
REGISTRY_PASSWORD = "registry_password"


@dataclass(slots=True)
class DockerPublisher:
    """
    Builds with `docker build` and pushes with `docker push`. Logs in first
    when the call was granted registry credentials.
    """

    docker_bin: str = "docker"
    timeout_s: float | None = None
    runner: CommandRunner = subprocess.run

    def _docker(
        self, *args: str, input_text: str | None = None, cwd: Path | None = None
    ) -> "subprocess.CompletedProcess[str]":
        return run_command(
            [self.docker_bin, *args],
            cwd=cwd,
            input_text=input_text,
            timeout_s=self.timeout_s,
            runner=self.runner,
        )

    def _login(self, destination: Destination, credentials: Credentials) -> None:
        if not (credentials.has(REGISTRY_USERNAME) and credentials.has(REGISTRY_PASSWORD)):
            return
        host = destination.location.split("/", 1)[0]
        proc = self._docker(
            "login", host,
            "--username", credentials.get(REGISTRY_USERNAME),
            "--password-stdin",
            input_text=credentials.get(REGISTRY_PASSWORD),
        )
        if proc.returncode != 0:
            raise PublishError(f"docker login to {host} failed", detail=combined_output(proc))

    def build_and_publish(
        self, build_context: Path, destination: Destination, *, credentials: Credentials
    ) -> ArtifactReference:
        ctx_dir = Path(build_context)
        if not ctx_dir.is_dir():
            raise BuildError(f"Build context not found: {ctx_dir}")

        uri = destination.uri
        try:
            built = self._docker("build", "--tag", uri, str(ctx_dir))
            if built.returncode != 0:
                raise BuildError(f"docker build failed for {uri}", detail=combined_output(built))

            self._login(destination, credentials)

            pushed = self._docker("push", uri)
            if pushed.returncode != 0:
                raise PublishError(f"docker push failed for {uri}", detail=combined_output(pushed))
            published_at = utc_now_iso()

            inspected = self._docker(
                "image", "inspect", "--format", "{{index .RepoDigests 0}}", uri
            )
        except FileNotFoundError as e:
            raise BuildError(f"docker binary not found: {self.docker_bin}") from e
        except subprocess.TimeoutExpired as e:
            raise PublishError(f"docker timed out after {e.timeout}s for {uri}") from e

        digest = None
        if inspected.returncode == 0 and "@" in inspected.stdout:
            digest = inspected.stdout.strip().rsplit("@", 1)[1]

        log.info("docker.pushed", uri=uri, digest=digest)
        return ArtifactReference(
            name=destination.name,
            location=destination.location,
            tag=destination.tag,
            published_at=published_at,
            digest=digest,
        )
