"""Workflow execution engine.

This module provides the pieces that execute workflow instances: the data
flow pipeline, next-task resolution, catch and retry decisions, event
correlation, the instance state machine, the task interpreter, the
definition registry and the local engine tying them together.
"""

from __future__ import annotations

from swflow.engine.correlation import CorrelationOutcome, EventCorrelationStore, PendingCorrelation
from swflow.engine.dataflow import DataFlowProcessor, ExecutionFrame
from swflow.engine.flow import ControlFlowResolver, Transition
from swflow.engine.instance import WorkflowStateMachine
from swflow.engine.local import LocalExecutionEngine
from swflow.engine.registry import WorkflowRegistry
from swflow.engine.retry import RetryEngine, compute_delay, error_matches
from swflow.engine.runner import TaskRunner
from swflow.engine.store import InMemoryInstanceStore

__all__ = [
    "ControlFlowResolver",
    "CorrelationOutcome",
    "DataFlowProcessor",
    "EventCorrelationStore",
    "ExecutionFrame",
    "InMemoryInstanceStore",
    "LocalExecutionEngine",
    "PendingCorrelation",
    "RetryEngine",
    "TaskRunner",
    "Transition",
    "WorkflowRegistry",
    "WorkflowStateMachine",
    "compute_delay",
    "error_matches",
]
