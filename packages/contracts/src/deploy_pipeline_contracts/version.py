from __future__ import annotations

from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as dist_version
from typing import Any

from .hashes import compute_contract_fingerprint, compute_resource_hashes
from .resources import schema_version_text


def safe_dist_version(dist_name: str) -> str:
    try:
        return dist_version(dist_name)
    except PackageNotFoundError:
        return "0.0.0+unknown"


CONTRACTS_DIST_VERSION: str = safe_dist_version("deploy-pipeline")


@dataclass(frozen=True, slots=True)
class ContractVersionInfo:
    """
    Which run-record contract a record was written against. Stamped into
    every run's `meta.contracts`.
    """

    schema_version: str
    dist_version: str
    fingerprint: str
    sha256: dict[str, str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "dist_version": self.dist_version,
            "fingerprint": self.fingerprint,
            "sha256": dict(self.sha256),
        }


def get_contract_version_info() -> ContractVersionInfo:
    return ContractVersionInfo(
        schema_version=schema_version_text(),
        dist_version=CONTRACTS_DIST_VERSION,
        fingerprint=compute_contract_fingerprint(),
        sha256=compute_resource_hashes(),
    )
