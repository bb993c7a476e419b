"""JSON Schema validation for deny-list files and package manifests."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

import jsonschema

SCHEMAS_DIR = Path(__file__).parent / "schemas"

DENY_LIST_SCHEMA = "deny-list.schema.json"
PACKAGE_MANIFEST_SCHEMA = "package-manifest.schema.json"


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@lru_cache(maxsize=None)
def _load_schema(schema_name: str) -> dict:
    schema_path = SCHEMAS_DIR / schema_name
    with open(schema_path) as f:
        return json.load(f)


def validate_document(instance: object, schema_name: str) -> ValidationResult:
    """Validate *instance*, collecting every error rather than the first."""
    validator = jsonschema.Draft202012Validator(_load_schema(schema_name))
    errors = [
        f"{e.json_path}: {e.message}"
        for e in sorted(validator.iter_errors(instance), key=lambda e: e.json_path)
    ]
    return ValidationResult(valid=not errors, errors=errors)
