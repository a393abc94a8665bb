"""Action executors for ``call`` and ``run`` tasks.

Concrete actions (HTTP, gRPC, containers) live outside the engine. An
application registers them in an :class:`ActionRegistry` under the name a
``call`` task uses (``call: sendEmail``) or the process kind a ``run`` task
uses (``run: {shell: ...}``). The registry ships with one built-in action,
``workflow``, which runs a registered definition as a child instance.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from swflow.core.errors import ErrorType, WorkflowError, WorkflowException
from swflow.core.types import WorkflowStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from swflow.core.protocols import ActionExecutor

__all__ = [
    "ActionConfig",
    "ActionRegistry",
    "BaseAction",
    "CallableAction",
    "Pending",
    "SubworkflowAction",
    "run_action",
]

logger = structlog.get_logger(__name__)


@dataclass
class ActionConfig:
    """What an executor knows about the task it runs for.

    Attributes:
        name: Registered action name (function name or run kind).
        arguments: Evaluated ``with`` arguments, or the ``run`` body.
        task_name: Name of the calling task.
        position: JSON pointer of the calling task.
        instance_id: Instance the task belongs to.
    """

    name: str
    arguments: Any = None
    task_name: str = ""
    position: str = ""
    instance_id: UUID | None = None


@dataclass
class Pending:
    """Handle for an action whose result arrives later.

    Attributes:
        awaitable: Resolves to the raw output of the action.
        description: Free text shown in logs.
    """

    awaitable: Awaitable[Any]
    description: str = field(default="")

    async def result(self) -> Any:
        return await self.awaitable


class BaseAction:
    """Base implementation for executors.

    Subclass and override :meth:`execute`.
    """

    name: str
    """Name the action is registered under."""

    description: str = ""
    """Human-readable description of what the action does."""

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description

    async def execute(self, transformed_input: Any, config: ActionConfig) -> Any:
        """Perform the action.

        Args:
            transformed_input: Evaluated arguments, or the task input when
                the task declares none.
            config: Description of the calling task.

        Returns:
            The raw output, or a :class:`Pending` handle.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Action {self.name} must implement execute()"
        raise NotImplementedError(msg)


class CallableAction(BaseAction):
    """Adapts a plain function or coroutine function into an executor.

    The function receives a single positional argument: the evaluated
    ``with`` arguments, or the transformed task input when the task declares
    no arguments.
    """

    def __init__(self, name: str, func: Callable[[Any], Any], description: str = "") -> None:
        super().__init__(name, description or (func.__doc__ or "").strip())
        self.func = func

    async def execute(self, transformed_input: Any, config: ActionConfig) -> Any:
        result = self.func(transformed_input)
        if inspect.isawaitable(result):
            result = await result
        return result


class SubworkflowAction(BaseAction):
    """Runs a registered definition as a child instance and awaits its output.

    The ``run.workflow`` body names the child (``namespace``, ``name``,
    ``version``) and may carry an ``input`` that replaces the task input.
    """

    def __init__(self, engine: Any) -> None:
        super().__init__("workflow", "Run a child workflow instance")
        self.engine = engine

    async def execute(self, transformed_input: Any, config: ActionConfig) -> Any:
        arguments = config.arguments or {}
        if "name" not in arguments:
            raise WorkflowException.of(
                ErrorType.CONFIGURATION, "run.workflow requires a 'name'", instance=config.position
            )
        child_input = arguments.get("input", transformed_input)
        child = await self.engine.start_workflow(
            arguments["name"],
            child_input,
            version=arguments.get("version"),
            namespace=arguments.get("namespace"),
            parent_id=config.instance_id,
        )
        logger.info("subworkflow_started", parent_id=str(config.instance_id), child_id=str(child.id))
        child = await self.engine.wait_for_completion(child.id)

        if child.status == WorkflowStatus.COMPLETED:
            return child.output
        detail = f"Child workflow '{child.workflow_name}' ({child.id}) ended as {child.status}"
        if child.error is not None and child.error.detail:
            detail += f": {child.error.detail}"
        raise WorkflowException(
            WorkflowError.of(ErrorType.RUNTIME, detail, instance=config.position, title="Subworkflow failed")
        )


class ActionRegistry:
    """Executors keyed by call name or run kind.

    Example:
        >>> actions = ActionRegistry()
        >>> @actions.function("double")
        ... def double(value):
        ...     return value * 2
    """

    def __init__(self) -> None:
        self._executors: dict[str, ActionExecutor] = {}

    def register(self, name: str, executor: ActionExecutor) -> None:
        self._executors[name] = executor

    def function(self, name: str | None = None) -> Callable[[Callable[[Any], Any]], Callable[[Any], Any]]:
        """Decorator registering a function as a :class:`CallableAction`."""

        def decorator(func: Callable[[Any], Any]) -> Callable[[Any], Any]:
            action_name = name or func.__name__
            self.register(action_name, CallableAction(action_name, func))
            return func

        return decorator

    def has(self, name: str) -> bool:
        return name in self._executors

    def get(self, name: str, position: str | None = None) -> ActionExecutor:
        """Return the executor registered under ``name``.

        Raises:
            WorkflowException: A ``configuration`` error if nothing is registered.
        """
        try:
            return self._executors[name]
        except KeyError:
            raise WorkflowException.of(
                ErrorType.CONFIGURATION, f"No action registered under '{name}'", instance=position
            ) from None

    def names(self) -> list[str]:
        return sorted(self._executors)


async def run_action(executor: ActionExecutor, transformed_input: Any, config: ActionConfig) -> Any:
    """Execute an action and classify its failures.

    A :class:`Pending` result is awaited. :class:`WorkflowException` passes
    through; :class:`asyncio.TimeoutError`, :class:`ConnectionError` and any
    other exception become ``timeout``, ``communication`` and ``runtime``
    errors respectively.
    """
    try:
        result = await executor.execute(transformed_input, config)
        if isinstance(result, Pending):
            result = await result.result()
    except WorkflowException as e:
        if e.error.instance is None:
            raise WorkflowException(e.error.at(config.position)) from e
        raise
    except asyncio.TimeoutError as e:
        raise WorkflowException.of(ErrorType.TIMEOUT, f"Action '{config.name}' timed out", instance=config.position) from e
    except ConnectionError as e:
        raise WorkflowException.of(ErrorType.COMMUNICATION, str(e) or type(e).__name__, instance=config.position) from e
    except Exception as e:
        logger.warning("action_failed", action=config.name, position=config.position, error=repr(e))
        raise WorkflowException.of(ErrorType.RUNTIME, str(e) or type(e).__name__, instance=config.position) from e
    return result
