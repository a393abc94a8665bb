"""Host-level exception hierarchy for swflow.

These exceptions report misuse of the runtime API (unknown definitions,
invalid definitions, illegal lifecycle transitions). Errors raised *inside* a
running workflow are typed :class:`~swflow.core.errors.WorkflowError` records
carried by :class:`~swflow.core.errors.WorkflowException` instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

__all__ = (
    "InvalidTransitionError",
    "WorkflowAlreadyCompletedError",
    "WorkflowAlreadyRegisteredError",
    "WorkflowInstanceNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
    "WorkflowsError",
)


class WorkflowsError(Exception):
    """Base exception for all swflow host errors.

    Catch this class to handle every error the runtime API raises with a
    single except clause.
    """


class WorkflowNotFoundError(WorkflowsError):
    """Raised when a workflow definition is not registered.

    Attributes:
        name: The name of the workflow that was not found.
        version: The specific version requested, if any.
        namespace: The namespace that was searched.
    """

    def __init__(self, name: str, version: str | None = None, namespace: str | None = None) -> None:
        """Initialize the exception with workflow details.

        Args:
            name: The name of the workflow that was not found.
            version: The specific version requested, if any.
            namespace: The namespace that was searched.
        """
        self.name = name
        self.version = version
        self.namespace = namespace
        msg = f"Workflow '{namespace}/{name}'" if namespace else f"Workflow '{name}'"
        if version:
            msg += f" version '{version}'"
        msg += " not found"
        super().__init__(msg)


class WorkflowAlreadyRegisteredError(WorkflowsError):
    """Raised when a different document is registered under an existing identity.

    Definitions are append-only: once ``(namespace, name, version)`` is
    registered its document can never change.

    Attributes:
        identity: The ``namespace/name:version`` string that is already taken.
    """

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"Workflow '{identity}' is already registered with a different definition")


class WorkflowInstanceNotFoundError(WorkflowsError):
    """Raised when a workflow instance is not found.

    Attributes:
        instance_id: The ID of the workflow instance that was not found.
    """

    def __init__(self, instance_id: str | UUID) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The ID of the workflow instance that was not found.
        """
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class InvalidTransitionError(WorkflowsError):
    """Raised when an instance is asked to move to a status it cannot reach.

    Attributes:
        instance_id: The instance whose lifecycle was violated.
        from_status: The status the instance is currently in.
        to_status: The status that was requested.
    """

    def __init__(self, instance_id: str | UUID, from_status: str, to_status: str) -> None:
        """Initialize the exception with transition details.

        Args:
            instance_id: The instance whose lifecycle was violated.
            from_status: The status the instance is currently in.
            to_status: The status that was requested.
        """
        self.instance_id = instance_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition for instance '{instance_id}' from '{from_status}' to '{to_status}'")


class WorkflowValidationError(WorkflowsError):
    """Raised when a workflow definition fails validation.

    This is the host-level form of a ``configuration`` error: it is raised at
    parse or registration time so a defective definition never starts.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Workflow validation failed: {'; '.join(errors)}")


class WorkflowAlreadyCompletedError(WorkflowsError):
    """Raised when trying to modify an instance in a terminal status.

    Attributes:
        instance_id: The ID of the workflow instance.
        status: The current terminal status of the workflow.
    """

    def __init__(self, instance_id: str | UUID, status: str) -> None:
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow '{instance_id}' is already {status}")
