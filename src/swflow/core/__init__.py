"""Core domain module for swflow.

This module exports the building blocks of workflow definitions and
instances: types, the error taxonomy, task definitions, definitions,
instance records, events and protocols.
"""

from __future__ import annotations

from swflow.core.definition import Schedule, UseSpec, WorkflowDefinition
from swflow.core.durations import parse_duration
from swflow.core.errors import ErrorType, WorkflowError, WorkflowException, normalize_error_type
from swflow.core.events import (
    CloudEvent,
    TaskCompleted,
    TaskFaulted,
    TaskRetried,
    TaskSkipped,
    TaskStarted,
    WorkflowCompleted,
    WorkflowEvent,
    WorkflowFaulted,
    WorkflowResumed,
    WorkflowStarted,
    WorkflowSuspended,
    WorkflowTerminated,
)
from swflow.core.models import WorkflowInstanceData
from swflow.core.position import NodePosition
from swflow.core.protocols import ActionExecutor, EventBus, ExpressionEvaluator, InstanceStore, SchemaValidator
from swflow.core.tasks import RetryPolicy, Task
from swflow.core.types import Context, FlowDirective, JSONValue, ListenMode, TaskKind, WorkflowStatus

__all__ = [
    "ActionExecutor",
    "CloudEvent",
    "Context",
    "ErrorType",
    "EventBus",
    "ExpressionEvaluator",
    "FlowDirective",
    "InstanceStore",
    "JSONValue",
    "ListenMode",
    "NodePosition",
    "RetryPolicy",
    "Schedule",
    "SchemaValidator",
    "Task",
    "TaskCompleted",
    "TaskFaulted",
    "TaskKind",
    "TaskRetried",
    "TaskSkipped",
    "TaskStarted",
    "UseSpec",
    "WorkflowCompleted",
    "WorkflowDefinition",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowException",
    "WorkflowFaulted",
    "WorkflowInstanceData",
    "WorkflowResumed",
    "WorkflowStarted",
    "WorkflowStatus",
    "WorkflowSuspended",
    "WorkflowTerminated",
    "normalize_error_type",
    "parse_duration",
]
