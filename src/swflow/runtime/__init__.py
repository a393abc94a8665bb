"""Default implementations of the capabilities the engine consumes."""

from __future__ import annotations

from swflow.runtime.actions import (
    ActionConfig,
    ActionRegistry,
    BaseAction,
    CallableAction,
    Pending,
    SubworkflowAction,
    run_action,
)
from swflow.runtime.expressions import (
    ExpressionEvaluationError,
    JQExpressionEvaluator,
    evaluate_template,
    is_expression,
    strip_expression,
)
from swflow.runtime.schemas import JSONSchemaValidator, SchemaValidationError

__all__ = [
    "ActionConfig",
    "ActionRegistry",
    "BaseAction",
    "CallableAction",
    "ExpressionEvaluationError",
    "JSONSchemaValidator",
    "JQExpressionEvaluator",
    "Pending",
    "SchemaValidationError",
    "SubworkflowAction",
    "evaluate_template",
    "is_expression",
    "run_action",
    "strip_expression",
]
