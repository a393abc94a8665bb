"""Core protocols for swflow.

This module defines the Protocol-based interfaces of the capabilities the
engine consumes. The engine only depends on these shapes, so every
capability can be replaced (a stub evaluator in tests, a database-backed
store in production) without touching the pipeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from uuid import UUID

    from swflow.core.events import CloudEvent, WorkflowEvent
    from swflow.core.models import WorkflowInstanceData
    from swflow.core.types import WorkflowStatus

__all__ = ["ActionExecutor", "EventBus", "ExpressionEvaluator", "InstanceStore", "SchemaValidator"]


@runtime_checkable
class ExpressionEvaluator(Protocol):
    """Pure evaluation of runtime expressions.

    Example:
        >>> class Echo:
        ...     def evaluate(self, expression, root, bindings):
        ...         return root
    """

    def evaluate(self, expression: str, root: Any, bindings: dict[str, Any]) -> Any:
        """Evaluate ``expression`` with ``root`` as ``.``.

        Args:
            expression: The expression text, with or without a ``${ }`` wrapper.
            root: Value addressed by ``.``.
            bindings: Named variables, addressed as ``$name``.

        Returns:
            The result value.

        Raises:
            ExpressionEvaluationError: If the expression is invalid or fails.
        """
        ...


@runtime_checkable
class SchemaValidator(Protocol):
    """Pure validation of values against JSON Schema documents."""

    def validate(self, schema: dict[str, Any], value: Any) -> None:
        """Raise ``SchemaValidationError`` if ``value`` does not satisfy ``schema``."""
        ...

    def check_schema(self, schema: dict[str, Any]) -> list[str]:
        """Return the problems of ``schema`` itself; empty when it is usable."""
        ...


@runtime_checkable
class ActionExecutor(Protocol):
    """Performs the action of a ``call`` or ``run`` task."""

    async def execute(self, transformed_input: Any, config: Any) -> Any:
        """Run the action.

        Args:
            transformed_input: The task's transformed input, or its evaluated
                arguments when the task declares them.
            config: The :class:`~swflow.runtime.actions.ActionConfig` of the task.

        Returns:
            The raw output, or a :class:`~swflow.runtime.actions.Pending`
            handle for work that completes later.

        Raises:
            WorkflowException: To fail with a specific error type. Any other
                exception is reported as a ``runtime`` error.
        """
        ...


@runtime_checkable
class InstanceStore(Protocol):
    """Durable storage of instance records."""

    async def save(self, instance: WorkflowInstanceData) -> None: ...

    async def load(self, instance_id: UUID) -> WorkflowInstanceData | None: ...

    async def list(self, status: WorkflowStatus | None = None) -> list[WorkflowInstanceData]: ...


@runtime_checkable
class EventBus(Protocol):
    """Outbound channel for lifecycle events and emitted events."""

    async def emit(self, event: WorkflowEvent) -> None:
        """Deliver a lifecycle event."""
        ...

    async def publish(self, event: CloudEvent) -> None:
        """Deliver an event produced by an ``emit`` task."""
        ...
