"""Core type definitions for swflow.

This module defines the enums and type aliases used throughout the runtime.
"""

from __future__ import annotations

from enum import StrEnum, auto
from typing import Any, TypeAlias

__all__ = [
    "Context",
    "FlowDirective",
    "JSONValue",
    "ListenMode",
    "TaskKind",
    "WorkflowStatus",
]


class TaskKind(StrEnum):
    """Discriminator of the task union.

    Attributes:
        SET: Produce output from a literal or templated value.
        CALL: Invoke a named function through the action executor registry.
        RUN: Run a process, script, container or child workflow.
        SWITCH: Pick a flow directive from ordered conditions.
        FOR: Iterate a child task list over a collection.
        FORK: Run branches concurrently and join them.
        TRY: Guard a task list with catch clauses and retries.
        RAISE: Raise a typed workflow error.
        WAIT: Suspend for a duration.
        LISTEN: Suspend until matching events arrive.
        EMIT: Publish an event.
        DO: Run a nested task list.
    """

    SET = auto()
    CALL = auto()
    RUN = auto()
    SWITCH = auto()
    FOR = auto()
    FORK = auto()
    TRY = auto()
    RAISE = auto()
    WAIT = auto()
    LISTEN = auto()
    EMIT = auto()
    DO = auto()


class WorkflowStatus(StrEnum):
    """Overall status of a workflow instance.

    Attributes:
        CREATED: Instance exists but has not started executing.
        RUNNING: Instance is actively executing tasks.
        SUSPENDED: Every live frame is waiting on a timer or an event.
        COMPLETED: Instance finished and produced its output.
        FAILED: Instance faulted on an unmatched error.
        TERMINATED: Instance was cancelled from outside.
    """

    CREATED = auto()
    RUNNING = auto()
    SUSPENDED = auto()
    COMPLETED = auto()
    FAILED = auto()
    TERMINATED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.TERMINATED)


class FlowDirective(StrEnum):
    """Reserved values of a task's ``then``. Any other value names a sibling task."""

    CONTINUE = auto()
    EXIT = auto()
    END = auto()


class ListenMode(StrEnum):
    """How many of a listen task's filters must match before it resumes."""

    ONE = auto()
    ANY = auto()
    ALL = auto()


JSONValue: TypeAlias = Any
"""Any value that survives a JSON round trip."""

Context: TypeAlias = dict[str, Any]
"""Type alias for the workflow-scoped ``$context`` mapping."""
