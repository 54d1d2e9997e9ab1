"""
Schema Validation - JSON Schema checks for submitted objects.

Machines and external objects arrive through the HTTP API as loosely typed
dicts; these schemas reject the shapes the reconciler cannot work with.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

OBJECT_REFERENCE_SCHEMA = {
    "type": "object",
    "required": ["apiVersion", "kind", "name"],
    "properties": {
        "apiVersion": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "namespace": {"type": "string"},
    },
}

MACHINE_SPEC_SCHEMA = {
    "type": "object",
    "required": ["infrastructureRef"],
    "properties": {
        "infrastructureRef": OBJECT_REFERENCE_SCHEMA,
        "bootstrap": {
            "type": "object",
            "properties": {
                "configRef": OBJECT_REFERENCE_SCHEMA,
                "data": {"type": "string"},
            },
        },
        "providerID": {"type": "string"},
    },
}

EXTERNAL_OBJECT_SCHEMA = {
    "type": "object",
    "required": ["apiVersion", "kind", "metadata"],
    "properties": {
        "apiVersion": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "minLength": 1},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string"},
                "finalizers": {"type": "array", "items": {"type": "string"}},
            },
        },
        "spec": {"type": "object"},
        "status": {"type": "object"},
    },
}


def validate_against_schema(
    data: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a dict against a JSON Schema.

    Args:
        data: The object to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    validator = Draft7Validator(schema)
    errors = sorted(
        validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]
    )

    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)


def validate_machine_spec(spec: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """Validate a Machine spec (camelCase layout)."""
    return validate_against_schema(spec, MACHINE_SPEC_SCHEMA)


def validate_external_object(obj: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """Validate an infrastructure or bootstrap object."""
    return validate_against_schema(obj, EXTERNAL_OBJECT_SCHEMA)
