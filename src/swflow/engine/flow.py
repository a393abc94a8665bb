"""Next-task resolution.

Given the task list a frame is walking, the index of the task that just
finished and its flow directive, :class:`ControlFlowResolver` answers where
execution continues: another index in the same list, out of the list, or the
end of the whole workflow.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from swflow.core.errors import ErrorType, WorkflowException
from swflow.core.types import FlowDirective

if TYPE_CHECKING:
    from collections.abc import Sequence

    from swflow.core.tasks import SwitchCase, SwitchTask, Task
    from swflow.engine.dataflow import DataFlowProcessor

__all__ = ["ControlFlowResolver", "Transition"]


@dataclass(frozen=True)
class Transition:
    """Where a frame goes after a task.

    Attributes:
        index: Next index in the current list, or ``None`` to leave the list.
        end: The workflow ends gracefully; every enclosing list is left.
    """

    index: int | None
    end: bool = False


class ControlFlowResolver:
    """Resolves ``then`` directives and switch decisions."""

    def __init__(self, processor: DataFlowProcessor) -> None:
        self.processor = processor

    def next(self, tasks: Sequence[Task], index: int, directive: str | None, position: str | None = None) -> Transition:
        """Resolve the directive of ``tasks[index]``.

        ``None`` and ``continue`` move to the next sibling (leaving the list
        after the last one), ``exit`` leaves the list, ``end`` ends the
        workflow, and any other value jumps to the sibling with that name.

        Raises:
            WorkflowException: ``configuration`` if the named sibling does not exist.
        """
        match directive:
            case None | FlowDirective.CONTINUE:
                following = index + 1
                return Transition(following if following < len(tasks) else None)
            case FlowDirective.EXIT:
                return Transition(None)
            case FlowDirective.END:
                return Transition(None, end=True)
            case _:
                for candidate, task in enumerate(tasks):
                    if task.name == directive:
                        return Transition(candidate)
                raise WorkflowException.of(
                    ErrorType.CONFIGURATION, f"Flow directive references unknown task '{directive}'", instance=position
                )

    def resolve_switch(
        self,
        task: SwitchTask,
        transformed_input: Any,
        bindings: dict[str, Any],
        position: str | None = None,
    ) -> SwitchCase:
        """Return the first case whose ``when`` is truthy.

        Cases are tested in declaration order and evaluation stops at the
        first match. A case without ``when`` is the default and is only
        chosen when no conditional case matches.

        Raises:
            WorkflowException: ``configuration`` if nothing matches and no default exists.
        """
        default = None
        for case in task.cases:
            if case.when is None:
                default = default or case
                continue
            if self.processor.is_truthy(case.when, transformed_input, bindings, position):
                return case
        if default is not None:
            return default
        raise WorkflowException.of(
            ErrorType.CONFIGURATION, f"Switch '{task.name}' matched no case and declares no default", instance=position
        )

    @staticmethod
    def directive_for(case: SwitchCase, task: SwitchTask) -> str | None:
        """The matched case's ``then`` wins over the switch task's own ``then``."""
        return case.then if case.then is not None else task.then
