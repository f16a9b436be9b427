"""Load and apply the JSON schemas for structured model output."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"


@lru_cache(maxsize=None)
def load_schema(name: str) -> Dict[str, Any]:
    """Load and cache a packaged schema such as ``extraction``."""
    return json.loads((SCHEMAS_DIR / f"{name}.json").read_text(encoding="utf-8"))


def response_schema(name: str) -> Dict[str, Any]:
    """Schema body for a strict structured-output request (no $schema/title keys)."""
    return {
        key: value
        for key, value in load_schema(name).items()
        if key not in {"$schema", "title"}
    }


def format_errors(errors: Iterable[ValidationError]) -> str:
    """Turn jsonschema errors into a concise human-readable string."""
    parts = []
    for err in errors:
        location = ".".join(str(piece) for piece in err.absolute_path) or "<root>"
        parts.append(f"{location}: {err.message}")
    return "; ".join(parts)


def validate_payload(
    payload: Any, name: str, schema: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Validate a decoded model response against the named schema.

    Raises ValueError with a readable message if validation fails.
    """
    validator = Draft202012Validator(schema or load_schema(name))
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.absolute_path))
    if errors:
        raise ValueError(f"{name} output failed validation: {format_errors(errors)}")
    return payload
