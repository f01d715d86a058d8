"""Schema validation for pear-reviewer JSON output, loaded from package data."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib.resources import files
from typing import Any

from jsonschema.validators import Draft202012Validator

SCHEMA_PACKAGE = "pear_reviewer.schemas"


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> dict[str, Any]:
    """Load ``<schema_name>.schema.json`` from package data.

    Raises:
        KeyError: If the schema is not packaged.
    """
    name = schema_name.removesuffix(".schema.json")
    resource = files(SCHEMA_PACKAGE).joinpath(f"{name}.schema.json")
    if not resource.is_file():
        raise KeyError(f"schema not found in package data: {name}")
    return json.loads(resource.read_text(encoding="utf-8"))


def validate_data(data: dict[str, Any], schema_name: str) -> None:
    """Validate data against a packaged schema.

    Raises:
        ValueError: If the data does not conform, listing every error by path.
    """
    validator = Draft202012Validator(load_schema(schema_name))
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]
    raise ValueError(
        f"Schema validation failed for '{schema_name}':\n" +
        "\n".join(f"  - {msg}" for msg in error_messages)
    )
