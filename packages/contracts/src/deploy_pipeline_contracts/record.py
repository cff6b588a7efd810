from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Iterable

from jsonschema import Draft202012Validator

from .errors import RecordValidationError
from .resources import run_record_schema


@lru_cache(maxsize=1)
def validator() -> Draft202012Validator:
    return Draft202012Validator(run_record_schema())


@lru_cache(maxsize=1)
def transition_validator() -> Draft202012Validator:
    schema = run_record_schema()
    return Draft202012Validator(
        {"$ref": "#/$defs/transition", "$defs": schema["$defs"]}
    )


def format_errors(errors: Iterable[Any]) -> str:
    lines: list[str] = []
    for e in errors:
        path = (
            ".".join(str(p) for p in e.path) if getattr(e, "path", None) else "<root>"
        )
        lines.append(f"- {path}: {e.message}")
    return "\n".join(lines)


def _check(v: Draft202012Validator, obj: dict[str, Any], what: str) -> None:
    errs = sorted(v.iter_errors(obj), key=lambda e: list(getattr(e, "path", [])))
    if errs:
        raise RecordValidationError(f"{what} validation failed:\n" + format_errors(errs))


def validate_run_record_dict(obj: dict[str, Any]) -> None:
    """
    Validate a sealed run record against the shipped JSON schema.
    Raises RecordValidationError with a readable message on failure.
    """
    _check(validator(), obj, "Run record")


def validate_transition_dict(obj: dict[str, Any]) -> None:
    _check(transition_validator(), obj, "Transition")


def validate_run_record_json(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RecordValidationError(f"Run record is not valid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise RecordValidationError(
            f"Run record must be a JSON object, got {type(obj).__name__}"
        )

    validate_run_record_dict(obj)
    return obj
