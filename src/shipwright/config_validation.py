"""
Schema validation for pipeline files and approval form input.

A small JSON-Schema-like validator covering what shipwright needs:
- type checking (string, integer, number, boolean, array, object, null)
- required fields, enum, minimum/maximum, minLength, pattern
- items for arrays, properties and additionalProperties for objects
- defaults filled in by ``apply_defaults``

Example:
    from shipwright.config_validation import validate, PIPELINE_SCHEMA

    errors = validate(raw_yaml_dict, PIPELINE_SCHEMA)
    if errors:
        raise ConfigurationError("; ".join(str(e) for e in errors))
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


@dataclass
class ValidationError:
    """
    A validation error with path and message.

    Attributes:
        path: Dotted path to the invalid field (e.g. "staging.port")
        message: Description of the problem
        value: The invalid value (if available)
        constraint: The violated constraint (if available)
    """

    path: str
    message: str
    value: Any = None
    constraint: str | None = None

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class SchemaValidator:
    """
    JSON Schema-like validator for plain dictionaries.

    Example:
        validator = SchemaValidator({
            "type": "object",
            "required": ["environment"],
            "properties": {
                "environment": {"type": "string", "enum": ["staging", "production"]},
                "replicas": {"type": "integer", "minimum": 1},
            },
        })
        errors = validator.validate({"environment": "qa", "replicas": 0})
        # [ValidationError("environment", "must be one of: ['staging', 'production']"),
        #  ValidationError("replicas", "must be >= 1")]
    """

    TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
        "null": type(None),
    }

    def __init__(self, schema: dict[str, Any]) -> None:
        self.schema = schema

    def validate(self, data: Any, path: str = "") -> list[ValidationError]:
        """
        Validate data against the schema.

        Returns:
            List of validation errors (empty if valid)
        """
        return self._validate_value(data, self.schema, path)

    def _validate_value(self, value: Any, schema: dict[str, Any], path: str) -> list[ValidationError]:
        if value is None:
            if "type" not in schema or _allows(schema["type"], "null"):
                return []
            return [ValidationError(path, "value cannot be null", value)]

        if "type" in schema:
            expected = schema["type"]
            names = expected if isinstance(expected, list) else [expected]
            if not any(self._check_type(value, name) for name in names):
                message = (
                    f"must be one of types: {', '.join(names)}"
                    if isinstance(expected, list)
                    else f"must be {expected}, got {type(value).__name__}"
                )
                return [ValidationError(path, message, value, "type")]

        errors: list[ValidationError] = []
        if "enum" in schema and value not in schema["enum"]:
            errors.append(ValidationError(path, f"must be one of: {schema['enum']}", value, "enum"))

        if isinstance(value, str):
            errors.extend(self._validate_string(value, schema, path))
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            errors.extend(self._validate_number(value, schema, path))
        elif isinstance(value, list):
            errors.extend(self._validate_array(value, schema, path))
        elif isinstance(value, dict):
            errors.extend(self._validate_object(value, schema, path))
        return errors

    def _check_type(self, value: Any, type_name: str) -> bool:
        # bool is an int subclass, but never an integer or number here
        if type_name in ("integer", "number") and isinstance(value, bool):
            return False
        expected = self.TYPE_MAP.get(type_name)
        if expected is None:
            return True
        return isinstance(value, expected)  # type: ignore[arg-type]

    def _validate_string(self, value: str, schema: dict[str, Any], path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []
        if "minLength" in schema and len(value) < schema["minLength"]:
            errors.append(
                ValidationError(path, f"must have minimum length {schema['minLength']}", value, "minLength")
            )
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            errors.append(
                ValidationError(path, f"must have maximum length {schema['maxLength']}", value, "maxLength")
            )
        if "pattern" in schema and not re.match(schema["pattern"], value):
            errors.append(ValidationError(path, f"must match pattern {schema['pattern']}", value, "pattern"))
        return errors

    def _validate_number(self, value: int | float, schema: dict[str, Any], path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(ValidationError(path, f"must be >= {schema['minimum']}", value, "minimum"))
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(ValidationError(path, f"must be <= {schema['maximum']}", value, "maximum"))
        return errors

    def _validate_array(self, value: list, schema: dict[str, Any], path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []
        if "minItems" in schema and len(value) < schema["minItems"]:
            errors.append(
                ValidationError(path, f"must have at least {schema['minItems']} items", value, "minItems")
            )
        if "items" in schema:
            for i, item in enumerate(value):
                item_path = f"{path}[{i}]" if path else f"[{i}]"
                errors.extend(self._validate_value(item, schema["items"], item_path))
        return errors

    def _validate_object(self, value: dict, schema: dict[str, Any], path: str) -> list[ValidationError]:
        errors: list[ValidationError] = []
        for field in schema.get("required", []):
            if field not in value:
                errors.append(ValidationError(_join(path, field), "is required", constraint="required"))

        properties = schema.get("properties", {})
        for field, field_schema in properties.items():
            if field in value:
                errors.extend(self._validate_value(value[field], field_schema, _join(path, field)))

        additional = schema.get("additionalProperties", True)
        extra = [field for field in value if field not in properties]
        if additional is False:
            for field in sorted(extra):
                errors.append(
                    ValidationError(
                        _join(path, field),
                        "is not an allowed property",
                        constraint="additionalProperties",
                    )
                )
        elif isinstance(additional, dict):
            for field in extra:
                errors.extend(self._validate_value(value[field], additional, _join(path, field)))
        return errors


def _join(path: str, field: str) -> str:
    return f"{path}.{field}" if path else field


def _allows(expected: str | list[str], type_name: str) -> bool:
    return expected == type_name or (isinstance(expected, list) and type_name in expected)


def validate(data: Any, schema: dict[str, Any]) -> list[ValidationError]:
    """Validate ``data`` against ``schema``; empty list if valid."""
    return SchemaValidator(schema).validate(data)


def is_valid(data: Any, schema: dict[str, Any]) -> bool:
    return not validate(data, schema)


def apply_defaults(data: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
    """
    Return a copy of ``data`` with top-level and nested object defaults filled in.

    Only properties absent from ``data`` are filled; explicit values,
    including None, are kept.
    """
    result = dict(data)
    for field, field_schema in schema.get("properties", {}).items():
        if field not in result:
            if "default" in field_schema:
                result[field] = field_schema["default"]
        elif isinstance(result[field], dict) and field_schema.get("type") == "object":
            result[field] = apply_defaults(result[field], field_schema)
    return result


# ============================================================================
# Common Schemas
# ============================================================================

# Context accepted by ShellTask
SHELL_TASK_SCHEMA = {
    "type": "object",
    "required": ["command"],
    "properties": {
        "command": {"type": "string", "minLength": 1},
        "cwd": {"type": "string"},
        "env": {"type": "object", "additionalProperties": {"type": "string"}},
        "expected_codes": {"type": "array", "items": {"type": "integer"}},
        "secrets": {"type": "array", "items": {"type": "string"}},
    },
}

_TARGET_SCHEMA = {
    "type": "object",
    "required": ["container_name", "port", "health_url"],
    "properties": {
        "container_name": {"type": "string", "minLength": 1, "pattern": r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$"},
        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "container_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "health_url": {"type": "string", "pattern": r"^https?://"},
        "env": {"type": "object", "additionalProperties": {"type": ["string", "integer", "number", "boolean"]}},
    },
    "additionalProperties": False,
}

# Web application pipeline file (YAML)
PIPELINE_SCHEMA = {
    "type": "object",
    "required": ["name", "repository", "image", "staging", "production"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "repository": {
            "type": "object",
            "required": ["url"],
            "properties": {
                "url": {"type": "string", "minLength": 1},
                "branch": {"type": "string", "minLength": 1, "default": "main"},
            },
            "additionalProperties": False,
        },
        "workspace": {"type": "string", "minLength": 1, "default": "./workspace"},
        "build_command": {"type": ["string", "null"], "default": None},
        "clean_workspace": {"type": "boolean", "default": True},
        "analysis": {
            "type": "object",
            "required": ["project_key", "server_url"],
            "properties": {
                "project_key": {"type": "string", "minLength": 1},
                "server_url": {"type": "string", "pattern": r"^https?://"},
                "sources": {"type": "string", "default": "."},
                "inclusions": {"type": "array", "items": {"type": "string"}, "default": []},
                "exclusions": {"type": "array", "items": {"type": "string"}, "default": []},
            },
            "additionalProperties": False,
        },
        "image": {
            "type": "object",
            "required": ["repository"],
            "properties": {
                "repository": {"type": "string", "minLength": 1},
                "registry": {"type": ["string", "null"], "default": None},
                "dockerfile": {"type": "string", "default": "Dockerfile"},
            },
            "additionalProperties": False,
        },
        "staging": _TARGET_SCHEMA,
        "production": _TARGET_SCHEMA,
        "approval": {
            "type": "object",
            "properties": {
                "approvers": {"type": "array", "items": {"type": "string", "minLength": 1}, "minItems": 1},
                "prompt": {"type": "string", "default": "Deploy to production?"},
                "timeout_minutes": {"type": "number", "minimum": 0, "default": 1440},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}
