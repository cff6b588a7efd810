"""
File-backed collaborators.

They keep their state under one directory and model just enough of a real
provisioner, registry and compute platform to run a pipeline end to end on
a workstation or in tests:

  {root}/provisioner/{environment}.json     applied resources + fingerprints
  {root}/registry/{location}/{tag}.json     image manifests
  {root}/services/{service_id}.json         image a service runs
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from deploy_pipeline.core import (
    BuildError,
    Credentials,
    ProvisionError,
    PublishError,
    UpdateError,
    atomic_write_json,
    read_json,
    safe_name,
    sha256_tree,
    utc_now_iso,
)
from deploy_pipeline.pipeline.types import ArtifactReference

from .interfaces import ApplyResult, DesiredState, Destination, PlanDiff, ServiceStatus

log = structlog.get_logger(__name__)

KNOWN_RESOURCES = frozenset({"registry", "service"})


def _location_dir(root: Path, location: str) -> Path:
    return root / "registry" / "__".join(safe_name(p) for p in location.split("/") if p)


@dataclass(slots=True)
class LocalRegistryPublisher:
    """
    "Builds" an image by content-hashing the build context and "pushes" it
    by writing a manifest. Tags are immutable per location.
    """

    root: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def manifest_path(self, location: str, tag: str) -> Path:
        return _location_dir(Path(self.root), location) / f"{safe_name(tag)}.json"

    def exists(self, image_uri: str) -> bool:
        location, sep, tag = image_uri.rpartition(":")
        if not sep or not location or "/" in tag:
            return False
        return self.manifest_path(location, tag).is_file()

    def build_and_publish(
        self, build_context: Path, destination: Destination, *, credentials: Credentials
    ) -> ArtifactReference:
        ctx_dir = Path(build_context)
        if not ctx_dir.is_dir():
            raise BuildError(
                f"Build context not found: {ctx_dir}", detail=str(ctx_dir.resolve())
            )
        digest = sha256_tree(ctx_dir)

        path = self.manifest_path(destination.location, destination.tag)
        with self._lock:
            if path.exists():
                raise PublishError(
                    f"Tag {destination.tag!r} already exists in {destination.location}",
                    detail=str(path),
                )
            published_at = utc_now_iso()
            atomic_write_json(
                path,
                {
                    "name": destination.name,
                    "location": destination.location,
                    "tag": destination.tag,
                    "digest": f"sha256:{digest.sha256}",
                    "context_bytes": digest.bytes,
                    "published_at": published_at,
                },
            )

        log.info("image.published", uri=destination.uri, digest=digest.sha256[:12])
        return ArtifactReference(
            name=destination.name,
            location=destination.location,
            tag=destination.tag,
            published_at=published_at,
            digest=f"sha256:{digest.sha256}",
        )


@dataclass(slots=True)
class LocalServicePlatform:
    """
    Compute platform: a service runs one image and is healthy only when that
    image can be pulled (published to the local registry or known-good).
    """

    root: Path
    registry: LocalRegistryPublisher
    known_images: frozenset[str] = frozenset()

    def _path(self, service_id: str) -> Path:
        return Path(self.root) / "services" / f"{safe_name(service_id.replace('/', '__'))}.json"

    def pullable(self, image: str) -> bool:
        return image in self.known_images or self.registry.exists(image)

    def deploy(self, service_id: str, image: str) -> None:
        """Called by the provisioner when it creates or changes a service."""
        atomic_write_json(
            self._path(service_id),
            {"service_id": service_id, "image": image, "updated_at": utc_now_iso()},
        )

    def describe(self, service_id: str) -> ServiceStatus | None:
        path = self._path(service_id)
        if not path.is_file():
            return None
        raw = read_json(path)
        image = str(raw["image"])
        status = "running" if self.pullable(image) else "image_pull_failed"
        return ServiceStatus(service_id=service_id, image=image, status=status)

    def update_service(
        self, service_id: str, artifact: ArtifactReference, *, credentials: Credentials
    ) -> ServiceStatus:
        if not self._path(service_id).is_file():
            raise UpdateError(
                f"Service {service_id!r} does not exist", detail="provision it first"
            )
        if not self.pullable(artifact.uri):
            raise UpdateError(
                f"Image {artifact.uri} cannot be pulled", detail="not found in registry"
            )

        current = self.describe(service_id)
        if current is not None and current.image == artifact.uri:
            return current

        self.deploy(service_id, artifact.uri)
        log.info("service.updated", service_id=service_id, image=artifact.uri)
        return ServiceStatus(service_id=service_id, image=artifact.uri, status="running")


@dataclass(slots=True)
class LocalProvisioner:
    """
    Idempotent desired-state provisioner. Each resource is stored with the
    fingerprint of its declared attributes; applying an unchanged resource
    is a no-op.
    """

    root: Path
    platform: LocalServicePlatform
    registry_host: str = "registry.local"
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _state_path(self, environment: str) -> Path:
        return Path(self.root) / "provisioner" / f"{safe_name(environment)}.json"

    def _load(self, environment: str) -> dict[str, Any]:
        path = self._state_path(environment)
        if not path.is_file():
            return {"resources": {}}
        return read_json(path)

    def _check(self, desired: DesiredState) -> None:
        unknown = sorted(set(desired.resources) - KNOWN_RESOURCES)
        if unknown:
            raise ProvisionError(
                f"Unsupported resource(s): {unknown}", detail=f"known: {sorted(KNOWN_RESOURCES)}"
            )
        svc = desired.resources.get("service")
        if svc is not None and not svc.get("image"):
            raise ProvisionError("Service resource declares no image")

    def _outputs(self, environment: str, resources: dict[str, Any]) -> dict[str, str]:
        out: dict[str, str] = {}
        reg = resources.get("registry")
        if reg is not None:
            out["registry_uri"] = f"{self.registry_host}/{reg['attributes']['name']}"
        svc = resources.get("service")
        if svc is not None:
            out["service_id"] = f"{environment}/{svc['attributes']['name']}"
        return out

    def plan(self, desired: DesiredState, *, credentials: Credentials) -> PlanDiff:
        self._check(desired)
        current = self._load(desired.environment)["resources"]
        add = change = 0
        details: list[str] = []
        for name in sorted(desired.resources):
            fp = desired.fingerprint(name)
            have = current.get(name)
            if have is None:
                add += 1
                details.append(f"+ {name}")
            elif have["fingerprint"] != fp:
                change += 1
                details.append(f"~ {name}")
        return PlanDiff(to_add=add, to_change=change, details=details)

    def apply(self, desired: DesiredState, *, credentials: Credentials) -> ApplyResult:
        self._check(desired)
        with self._lock:
            state = self._load(desired.environment)
            resources: dict[str, Any] = state["resources"]
            changed: list[str] = []

            for name in sorted(desired.resources):
                fp = desired.fingerprint(name)
                have = resources.get(name)
                if have is not None and have["fingerprint"] == fp:
                    continue
                resources[name] = {
                    "fingerprint": fp,
                    "attributes": dict(desired.resources[name]),
                    "applied_at": utc_now_iso(),
                }
                changed.append(name)

            outputs = self._outputs(
                desired.environment, {k: resources[k] for k in desired.resources}
            )

            if "service" in changed:
                self.platform.deploy(
                    outputs["service_id"], str(desired.resources["service"]["image"])
                )
            if changed:
                atomic_write_json(self._state_path(desired.environment), state)

        log.info(
            "provision.applied",
            environment=desired.environment,
            changed=changed,
            outputs=sorted(outputs),
        )
        return ApplyResult(
            outputs=outputs,
            status="applied" if changed else "unchanged",
            changes=len(changed),
        )
