from __future__ import annotations

from .errors import ContractsError, ContractsResourceError, RecordValidationError
from .hashes import (
    CONTRACT_RESOURCE_PATHS,
    compute_contract_fingerprint,
    compute_resource_hashes,
    read_bytes,
    sha256_hex,
)
from .record import (
    validate_run_record_dict,
    validate_run_record_json,
    validate_transition_dict,
)
from .resources import (
    RUN_RECORD_SCHEMA_REL,
    SCHEMA_VERSION_REL,
    read_json,
    read_text,
    run_record_schema,
    schema_version_int,
    schema_version_text,
)
from .version import (
    CONTRACTS_DIST_VERSION,
    ContractVersionInfo,
    get_contract_version_info,
)

__all__ = [
    "ContractsError",
    "ContractsResourceError",
    "RecordValidationError",
    "read_text",
    "read_bytes",
    "read_json",
    "run_record_schema",
    "schema_version_text",
    "schema_version_int",
    "RUN_RECORD_SCHEMA_REL",
    "SCHEMA_VERSION_REL",
    "validate_run_record_dict",
    "validate_run_record_json",
    "validate_transition_dict",
    "CONTRACTS_DIST_VERSION",
    "ContractVersionInfo",
    "get_contract_version_info",
    "sha256_hex",
    "CONTRACT_RESOURCE_PATHS",
    "compute_resource_hashes",
    "compute_contract_fingerprint",
]
