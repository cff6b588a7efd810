from __future__ import annotations

import json
from pathlib import Path

import jsonschema
from pydantic import TypeAdapter, ValidationError

from deploy_pipeline.core import DefinitionError, read_json

from .models import PipelineDefinition


def schema_for_pipeline_definition() -> dict:
    return TypeAdapter(PipelineDefinition).json_schema()


def parse_definition(raw: dict) -> PipelineDefinition:
    """
    Validate a decoded definition: JSON schema first (structure), then the
    pydantic model (cross-field rules).
    """
    try:
        jsonschema.validate(instance=raw, schema=schema_for_pipeline_definition())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise DefinitionError(f"Pipeline definition invalid at {where}: {e.message}") from e
    try:
        return PipelineDefinition.model_validate(raw)
    except ValidationError as e:
        raise DefinitionError(f"Pipeline definition invalid: {e}") from e


def load_definition(path: Path) -> PipelineDefinition:
    path = Path(path)
    if not path.is_file():
        raise DefinitionError(f"Pipeline definition not found: {path}")
    try:
        raw = read_json(path)
    except json.JSONDecodeError as e:
        raise DefinitionError(f"Pipeline definition is not valid JSON: {path}: {e}") from e
    if not isinstance(raw, dict):
        raise DefinitionError(f"Pipeline definition must be a JSON object: {path}")
    return parse_definition(raw)
