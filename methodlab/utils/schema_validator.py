"""
Schema handling for structured generation.

Response schemas are declared in the Gemini OpenAPI subset (upper-case
``type`` names, ``properties``, ``required``, ``items``, ``enum``) so the same
descriptor can be sent to the oracle and checked locally. This module:

- checks that a descriptor is well formed before it is sent
- validates a parsed payload against it with jsonschema
- fills defaults for optional properties under the lenient parse policy
"""

import copy
import logging
from typing import Any, Dict, List, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)


GEMINI_TO_JSON_TYPES = {
    "OBJECT": "object",
    "ARRAY": "array",
    "STRING": "string",
    "BOOLEAN": "boolean",
    "NUMBER": "number",
    "INTEGER": "integer",
}

_TYPE_DEFAULTS = {
    "STRING": "",
    "BOOLEAN": False,
    "NUMBER": 0,
    "INTEGER": 0,
}

# Returned by _default_for when a property has no safe default
_NO_DEFAULT = object()


def check_schema_descriptor(schema: Any) -> None:
    """
    Check that a schema descriptor describes a well-formed object shape.

    Raises:
        ValueError: If the descriptor is malformed.
    """
    if not isinstance(schema, dict) or schema.get("type") != "OBJECT":
        raise ValueError("Schema root must be an OBJECT descriptor")
    _check_node(schema, "$")


def _check_node(node: Any, path: str) -> None:
    if not isinstance(node, dict):
        raise ValueError(f"{path}: descriptor must be a mapping")

    node_type = node.get("type")
    if node_type not in GEMINI_TO_JSON_TYPES:
        raise ValueError(f"{path}: unknown type {node_type!r}")

    if "enum" in node:
        enum = node["enum"]
        if node_type != "STRING":
            raise ValueError(f"{path}: enum is only allowed on STRING")
        if not isinstance(enum, list) or not enum or not all(isinstance(v, str) for v in enum):
            raise ValueError(f"{path}: enum must be a non-empty list of strings")

    if node_type == "OBJECT":
        properties = node.get("properties")
        if not isinstance(properties, dict) or not properties:
            raise ValueError(f"{path}: OBJECT needs non-empty properties")
        required = node.get("required", [])
        unknown = [name for name in required if name not in properties]
        if unknown:
            raise ValueError(f"{path}: required names not in properties: {unknown}")
        for name, child in properties.items():
            _check_node(child, f"{path}.{name}")

    elif node_type == "ARRAY":
        if "items" not in node:
            raise ValueError(f"{path}: ARRAY needs items")
        _check_node(node["items"], f"{path}[]")


def to_json_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a Gemini schema descriptor to an equivalent JSON Schema."""
    json_type = GEMINI_TO_JSON_TYPES[schema["type"]]
    result: Dict[str, Any] = {
        "type": [json_type, "null"] if schema.get("nullable") else json_type
    }

    if "enum" in schema:
        result["enum"] = list(schema["enum"])
        if schema.get("nullable"):
            result["enum"].append(None)
    if "properties" in schema:
        result["properties"] = {
            name: to_json_schema(child)
            for name, child in schema["properties"].items()
        }
    if schema.get("required"):
        result["required"] = list(schema["required"])
    if "items" in schema:
        result["items"] = to_json_schema(schema["items"])

    return result


def validate_payload(
    data: Any,
    schema: Dict[str, Any],
) -> Tuple[bool, List[Dict[str, Any]]]:
    """
    Validate a parsed payload against a schema descriptor.

    Args:
        data: Parsed JSON payload
        schema: Gemini schema descriptor

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    validator = Draft7Validator(to_json_schema(schema))

    errors = []
    for error in validator.iter_errors(data):
        errors.append(_format_error(error))

    return len(errors) == 0, errors


def _format_error(error: ValidationError) -> Dict[str, Any]:
    """Format validation error for reporting."""
    return {
        "path": ".".join(str(p) for p in error.absolute_path),
        "message": error.message,
        "validator": error.validator,
        "value": str(error.instance)[:100] if error.instance else None,
        "schema_path": ".".join(str(p) for p in error.schema_path),
    }


def apply_optional_defaults(data: Any, schema: Dict[str, Any]) -> Any:
    """
    Fill absent optional properties with type defaults.

    Required properties are never invented: a payload missing one stays
    invalid. Enum strings and objects with required members have no default
    and are left absent.

    Returns:
        A new payload; the input is not modified.
    """
    result = copy.deepcopy(data)
    _fill(result, schema)
    return result


def _fill(data: Any, schema: Dict[str, Any]) -> None:
    node_type = schema.get("type")

    if node_type == "OBJECT" and isinstance(data, dict):
        required = set(schema.get("required", []))
        for name, child in schema.get("properties", {}).items():
            if name in data:
                _fill(data[name], child)
            elif name not in required:
                default = _default_for(child)
                if default is not _NO_DEFAULT:
                    data[name] = default

    elif node_type == "ARRAY" and isinstance(data, list):
        for item in data:
            _fill(item, schema["items"])


def _default_for(schema: Dict[str, Any]) -> Any:
    node_type = schema.get("type")
    if "enum" in schema:
        return _NO_DEFAULT
    if node_type == "ARRAY":
        return []
    if node_type == "OBJECT":
        if schema.get("required"):
            return _NO_DEFAULT
        value: Dict[str, Any] = {}
        _fill(value, schema)
        return value
    return _TYPE_DEFAULTS.get(node_type, _NO_DEFAULT)
