"""JSON Schema validation backed by ``jsonschema``."""

from __future__ import annotations

import json
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

__all__ = ["JSONSchemaValidator", "SchemaValidationError"]


class SchemaValidationError(Exception):
    """Raised when a value does not satisfy a schema.

    Attributes:
        path: JSON pointer of the first offending location.
        message: Description of the first violation.
        errors: Every violation as ``"<path>: <message>"``.
    """

    def __init__(self, path: str, message: str, errors: list[str] | None = None) -> None:
        self.path = path
        self.message = message
        self.errors = errors or [f"{path}: {message}"]
        super().__init__(f"{path}: {message}")


def _pointer(parts: Any) -> str:
    return "/" + "/".join(str(part) for part in parts)


class JSONSchemaValidator:
    """Validates values with the validator class the schema's ``$schema`` selects.

    Draft 2020-12 is used when a schema does not declare its dialect.
    Compiled validators are cached per schema document.
    """

    def __init__(self) -> None:
        self._validators: dict[str, Any] = {}

    def _validator(self, schema: dict[str, Any]) -> Any:
        key = json.dumps(schema, sort_keys=True, default=str)
        validator = self._validators.get(key)
        if validator is None:
            cls = validator_for(schema, default=Draft202012Validator)
            validator = cls(schema)
            self._validators[key] = validator
        return validator

    def validate(self, schema: dict[str, Any], value: Any) -> None:
        errors = sorted(self._validator(schema).iter_errors(value), key=lambda e: [str(part) for part in e.absolute_path])
        if errors:
            first = errors[0]
            raise SchemaValidationError(
                _pointer(first.absolute_path),
                first.message,
                [f"{_pointer(error.absolute_path)}: {error.message}" for error in errors],
            )

    def check_schema(self, schema: dict[str, Any]) -> list[str]:
        if not isinstance(schema, dict):
            return ["schema must be a mapping"]
        cls = validator_for(schema, default=Draft202012Validator)
        try:
            cls.check_schema(schema)
        except SchemaError as e:
            return [e.message]
        return []
