"""swflow - a runtime for declarative workflows.

Workflow definitions are task lists in the Serverless Workflow DSL shape.
Instances are executed on asyncio, transform data with jq, validate it with
JSON Schema and can be persisted with SQLAlchemy and served with Litestar.

Key Features:
    - Versioned workflow definitions from mappings, JSON or YAML
    - Sequential, conditional, iterative and parallel execution
    - Typed errors with catch clauses and retry policies
    - Event correlation with durable resume after restarts
    - Litestar plugin and REST API

Example:
    >>> from swflow import LocalExecutionEngine, WorkflowDefinition, WorkflowRegistry
    >>>
    >>> registry = WorkflowRegistry()
    >>> registry.register(WorkflowDefinition.from_yaml(document))
    >>> engine = LocalExecutionEngine(registry)
    >>> instance = await engine.start_workflow("greet", {"user": {"name": "Ada"}})
"""

from __future__ import annotations

from swflow.__metadata__ import __project__, __version__
from swflow.config import EngineConfig
from swflow.core.definition import WorkflowDefinition
from swflow.core.errors import ErrorType, WorkflowError, WorkflowException
from swflow.core.events import CloudEvent
from swflow.core.models import WorkflowInstanceData
from swflow.core.types import WorkflowStatus
from swflow.engine.local import LocalExecutionEngine
from swflow.engine.registry import WorkflowRegistry
from swflow.exceptions import (
    InvalidTransitionError,
    WorkflowAlreadyCompletedError,
    WorkflowAlreadyRegisteredError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
    WorkflowsError,
    WorkflowValidationError,
)
from swflow.log import configure_logging
from swflow.plugin import WorkflowPlugin, WorkflowPluginConfig
from swflow.runtime.actions import ActionRegistry, BaseAction, CallableAction

__all__ = (
    "ActionRegistry",
    "BaseAction",
    "CallableAction",
    "CloudEvent",
    "EngineConfig",
    "ErrorType",
    "InvalidTransitionError",
    "LocalExecutionEngine",
    "WorkflowAlreadyCompletedError",
    "WorkflowAlreadyRegisteredError",
    "WorkflowDefinition",
    "WorkflowError",
    "WorkflowException",
    "WorkflowInstanceData",
    "WorkflowInstanceNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowPlugin",
    "WorkflowPluginConfig",
    "WorkflowRegistry",
    "WorkflowStatus",
    "WorkflowValidationError",
    "WorkflowsError",
    "__project__",
    "__version__",
    "configure_logging",
)
