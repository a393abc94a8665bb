"""Typed workflow errors.

Every failure inside a running workflow is classified into one
:class:`ErrorType` and carried as a :class:`WorkflowError` record. The record
travels inside a :class:`WorkflowException` so ordinary ``try``/``except``
unwinding carries it to the nearest matching catch clause, or to the instance
state machine when nothing matches.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import StrEnum
from typing import Any

__all__ = [
    "ERROR_TYPE_PREFIX",
    "ErrorType",
    "WorkflowError",
    "WorkflowException",
    "normalize_error_type",
]

ERROR_TYPE_PREFIX = "https://serverlessworkflow.io/spec/1.0.0/errors/"


class ErrorType(StrEnum):
    """The fixed error taxonomy.

    The value is the short name; :attr:`uri` is the canonical type URI and
    :attr:`default_status` the HTTP-style classification status.
    """

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    EXPRESSION = "expression"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    TIMEOUT = "timeout"
    COMMUNICATION = "communication"
    RUNTIME = "runtime"

    @property
    def uri(self) -> str:
        return f"{ERROR_TYPE_PREFIX}{self.value}"

    @property
    def default_status(self) -> int:
        return _DEFAULT_STATUS[self]


_DEFAULT_STATUS = {
    ErrorType.CONFIGURATION: 400,
    ErrorType.VALIDATION: 400,
    ErrorType.EXPRESSION: 400,
    ErrorType.AUTHENTICATION: 401,
    ErrorType.AUTHORIZATION: 403,
    ErrorType.TIMEOUT: 408,
    ErrorType.COMMUNICATION: 500,
    ErrorType.RUNTIME: 500,
}


def normalize_error_type(value: str | ErrorType) -> str:
    """Return the canonical form of an error type.

    Short names of the built-in taxonomy (``"timeout"``) expand to their URI.
    Custom types are returned unchanged.
    """
    if isinstance(value, ErrorType):
        return value.uri
    if value in _DEFAULT_STATUS:
        return ErrorType(value).uri
    return value


@dataclass(frozen=True)
class WorkflowError:
    """A typed error record.

    Attributes:
        type: Canonical error type URI (custom types keep their own value).
        status: HTTP-style classification status.
        title: Short human-readable summary.
        detail: Occurrence-specific explanation.
        instance: JSON pointer of the task that raised the error.
    """

    type: str
    status: int
    title: str | None = None
    detail: str | None = None
    instance: str | None = None

    @classmethod
    def of(
        cls,
        error_type: ErrorType,
        detail: str | None = None,
        *,
        instance: str | None = None,
        title: str | None = None,
    ) -> WorkflowError:
        """Build a record of one of the built-in types with its default status."""
        return cls(
            type=error_type.uri,
            status=error_type.default_status,
            title=title or f"{error_type.value.capitalize()} error",
            detail=detail,
            instance=instance,
        )

    @property
    def error_type(self) -> ErrorType | None:
        """The built-in taxonomy member this record belongs to, if any."""
        if self.type.startswith(ERROR_TYPE_PREFIX):
            name = self.type.removeprefix(ERROR_TYPE_PREFIX)
            if name in _DEFAULT_STATUS:
                return ErrorType(name)
        return None

    def at(self, instance: str) -> WorkflowError:
        return replace(self, instance=instance)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowError:
        return cls(
            type=normalize_error_type(data["type"]),
            status=int(data["status"]),
            title=data.get("title"),
            detail=data.get("detail"),
            instance=data.get("instance"),
        )


class WorkflowException(Exception):  # noqa: N818
    """Carries a :class:`WorkflowError` through Python exception unwinding."""

    def __init__(self, error: WorkflowError) -> None:
        self.error = error
        super().__init__(error.detail or error.title or error.type)

    @classmethod
    def of(
        cls,
        error_type: ErrorType,
        detail: str | None = None,
        *,
        instance: str | None = None,
        title: str | None = None,
    ) -> WorkflowException:
        return cls(WorkflowError.of(error_type, detail, instance=instance, title=title))
