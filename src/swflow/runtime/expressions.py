"""jq-backed runtime expressions.

Expressions may be written bare (``.user.id``) or wrapped in ``${ ... }``.
Named bindings are exposed to jq as ``$name`` variables.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

import jq
import structlog

if TYPE_CHECKING:
    from swflow.core.protocols import ExpressionEvaluator

__all__ = [
    "ExpressionEvaluationError",
    "JQExpressionEvaluator",
    "evaluate_template",
    "is_expression",
    "strip_expression",
]

logger = structlog.get_logger(__name__)

_WRAPPED = re.compile(r"^\s*\$\{(?P<body>.*)\}\s*$", re.DOTALL)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ExpressionEvaluationError(Exception):
    """Raised when an expression cannot be compiled or evaluated.

    Attributes:
        expression: The offending expression text.
    """

    def __init__(self, expression: str, message: str) -> None:
        self.expression = expression
        super().__init__(f"Unable to evaluate '{expression}': {message}")


def is_expression(value: Any) -> bool:
    """Whether ``value`` is a ``${ ... }`` wrapped runtime expression."""
    return isinstance(value, str) and _WRAPPED.match(value) is not None


def strip_expression(expression: str) -> str:
    """Remove the ``${ }`` wrapper, if any."""
    match = _WRAPPED.match(expression)
    return match.group("body").strip() if match else expression.strip()


class JQExpressionEvaluator:
    """Evaluates expressions with the ``jq`` library.

    A program emitting a single value returns that value, one emitting
    several returns them as a list, and one emitting nothing returns
    ``None``.

    Example:
        >>> evaluator = JQExpressionEvaluator()
        >>> evaluator.evaluate("${ .a + $b }", {"a": 1}, {"b": 2})
        3
    """

    def evaluate(self, expression: str, root: Any, bindings: dict[str, Any]) -> Any:
        program_text = strip_expression(expression)
        args = {}
        for name, value in bindings.items():
            name = name.lstrip("$")
            if not _IDENTIFIER.match(name):
                raise ExpressionEvaluationError(expression, f"invalid variable name '{name}'")
            args[name] = value

        try:
            program = jq.compile(program_text, args=args)
            results = program.input_value(root).all()
        except ValueError as e:
            logger.debug("expression_failed", expression=program_text, error=str(e))
            raise ExpressionEvaluationError(expression, str(e)) from e

        if not results:
            return None
        if len(results) == 1:
            return results[0]
        return results


def evaluate_template(
    evaluator: ExpressionEvaluator,
    template: Any,
    root: Any,
    bindings: dict[str, Any],
) -> Any:
    """Render a value whose ``${ ... }`` string leaves are runtime expressions.

    Mappings and lists are walked recursively (mapping keys are kept as
    written). Strings that are not wrapped expressions and other scalars are
    returned as literals.
    """
    if isinstance(template, dict):
        return {key: evaluate_template(evaluator, value, root, bindings) for key, value in template.items()}
    if isinstance(template, list):
        return [evaluate_template(evaluator, value, root, bindings) for value in template]
    if is_expression(template):
        return evaluator.evaluate(template, root, bindings)
    return template
