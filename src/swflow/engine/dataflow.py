"""The transform/validate pipeline.

The same three operations run at workflow and at task granularity:

* :meth:`DataFlowProcessor.process_input` validates raw input, then
  transforms it with ``input.from``.
* :meth:`DataFlowProcessor.process_output` transforms raw output with
  ``output.as``, then validates it.
* :meth:`DataFlowProcessor.process_export` computes the value that replaces
  ``$context``.

Every failure surfaces as a typed ``validation`` or ``expression`` error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from swflow.core.errors import ErrorType, WorkflowError, WorkflowException
from swflow.runtime.expressions import ExpressionEvaluationError, evaluate_template
from swflow.runtime.schemas import SchemaValidationError

if TYPE_CHECKING:
    from swflow.core.protocols import ExpressionEvaluator, SchemaValidator

__all__ = ["DataFlowProcessor", "ExecutionFrame"]

_UNSET: Any = object()


@dataclass
class ExecutionFrame:
    """Transient processing state of one task.

    Attributes:
        raw_input: Value the task received.
        transformed_input: Value after ``input.from``.
        raw_output: Value the task's action produced.
        transformed_output: Value after ``output.as``; also the next task's raw input.
        export_result: Replacement ``$context``, when the task exports.
    """

    raw_input: Any
    transformed_input: Any = _UNSET
    raw_output: Any = _UNSET
    transformed_output: Any = _UNSET
    export_result: dict[str, Any] | None = None


class DataFlowProcessor:
    """Runs expressions and schema checks for the engine.

    Args:
        evaluator: Expression evaluator capability.
        validator: Schema validator capability.
    """

    def __init__(self, evaluator: ExpressionEvaluator, validator: SchemaValidator) -> None:
        self.evaluator = evaluator
        self.validator = validator

    def evaluate(self, expression: Any, root: Any, bindings: dict[str, Any], position: str | None = None) -> Any:
        """Evaluate a transform.

        A string is an expression whether or not it carries a ``${ }``
        wrapper. A mapping or list is a template whose wrapped string leaves
        are evaluated. ``None`` is the identity.
        """
        if expression is None:
            return root
        try:
            if isinstance(expression, str):
                return self.evaluator.evaluate(expression, root, bindings)
            return evaluate_template(self.evaluator, expression, root, bindings)
        except ExpressionEvaluationError as e:
            raise WorkflowException.of(ErrorType.EXPRESSION, str(e), instance=position) from e

    def render(self, template: Any, root: Any, bindings: dict[str, Any], position: str | None = None) -> Any:
        """Evaluate only the ``${ }`` wrapped leaves of ``template``; plain strings stay literal."""
        try:
            return evaluate_template(self.evaluator, template, root, bindings)
        except ExpressionEvaluationError as e:
            raise WorkflowException.of(ErrorType.EXPRESSION, str(e), instance=position) from e

    def is_truthy(self, expression: str, root: Any, bindings: dict[str, Any], position: str | None = None) -> bool:
        """Evaluate a condition with jq truthiness: only ``false`` and ``null`` are falsy."""
        result = self.evaluate(expression, root, bindings, position)
        return result is not None and result is not False

    def validate(self, schema: dict[str, Any] | None, value: Any, stage: str, position: str | None = None) -> None:
        if schema is None:
            return
        try:
            self.validator.validate(schema, value)
        except SchemaValidationError as e:
            raise WorkflowException(
                WorkflowError.of(
                    ErrorType.VALIDATION,
                    f"Invalid {stage}: {'; '.join(e.errors)}",
                    instance=position,
                )
            ) from e

    def process_input(
        self,
        raw: Any,
        schema: dict[str, Any] | None = None,
        from_: Any = None,
        bindings: dict[str, Any] | None = None,
        position: str | None = None,
    ) -> Any:
        """Validate ``raw`` against ``schema``, then transform it with ``from_``.

        The transform is never evaluated when validation fails.
        """
        self.validate(schema, raw, "input", position)
        return self.evaluate(from_, raw, bindings or {}, position)

    def process_output(
        self,
        raw: Any,
        as_: Any = None,
        schema: dict[str, Any] | None = None,
        bindings: dict[str, Any] | None = None,
        position: str | None = None,
    ) -> Any:
        """Transform ``raw`` with ``as_``, then validate the result against ``schema``."""
        transformed = self.evaluate(as_, raw, bindings or {}, position)
        self.validate(schema, transformed, "output", position)
        return transformed

    def process_export(
        self,
        output: Any,
        context: dict[str, Any],
        as_: Any = None,
        schema: dict[str, Any] | None = None,
        bindings: dict[str, Any] | None = None,
        position: str | None = None,
    ) -> dict[str, Any]:
        """Compute the replacement ``$context``.

        ``as_`` is evaluated with the transformed output as ``.`` and as
        ``$output``, and the current context as ``$context``. The result
        replaces the context entirely; merging must be expressed in the
        expression itself (``$context + {...}``). When ``as_`` is omitted the
        context is left unchanged.

        Raises:
            WorkflowException: ``expression`` if the result is not a mapping,
                ``validation`` if it fails ``schema``.
        """
        scope = {**(bindings or {}), "context": context, "output": output}
        new_context = context if as_ is None else self.evaluate(as_, output, scope, position)
        if not isinstance(new_context, dict):
            raise WorkflowException.of(
                ErrorType.EXPRESSION,
                f"Export must produce an object, got {type(new_context).__name__}",
                instance=position,
            )
        self.validate(schema, new_context, "context", position)
        return new_context
