"""Catch matching and retry decisions for ``try`` tasks."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from swflow.core.errors import ErrorType, normalize_error_type
from swflow.core.tasks import Backoff, CatchClause, RetryPolicy

if TYPE_CHECKING:
    import random
    from collections.abc import Sequence

    from swflow.core.errors import WorkflowError
    from swflow.core.definition import UseSpec
    from swflow.engine.dataflow import DataFlowProcessor

__all__ = ["RetryEngine", "compute_delay", "error_matches"]

logger = structlog.get_logger(__name__)

_FILTER_FIELDS = ("type", "status", "instance", "title", "detail")


def error_matches(error: WorkflowError, filters: dict[str, Any]) -> bool:
    """Whether ``error`` satisfies an ``errors.with`` equality filter.

    Types compare in canonical form, so ``timeout`` matches the taxonomy URI.
    An empty filter matches every error.
    """
    for key in _FILTER_FIELDS:
        if key not in filters:
            continue
        expected = filters[key]
        actual = getattr(error, key)
        if key == "type":
            if normalize_error_type(str(expected)) != actual:
                return False
        elif key == "status":
            if int(expected) != actual:
                return False
        elif expected != actual:
            return False
    return True


def compute_delay(policy: RetryPolicy, failure: int, rng: random.Random | None = None) -> timedelta:
    """Delay to wait after the ``failure``-th failed attempt (1-based).

    ``constant`` waits ``delay``, ``linear`` waits ``delay * failure`` and
    ``exponential`` waits ``delay * multiplier ** (failure - 1)``. The result
    is capped at ``max_delay`` before jitter is added.

    Example:
        >>> policy = RetryPolicy(delay=timedelta(seconds=1), backoff=Backoff.EXPONENTIAL, multiplier=2)
        >>> [compute_delay(policy, n).total_seconds() for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """
    base = policy.delay.total_seconds()
    match policy.backoff:
        case Backoff.CONSTANT:
            seconds = base
        case Backoff.LINEAR:
            seconds = base * failure
        case Backoff.EXPONENTIAL:
            seconds = base * policy.multiplier ** (failure - 1)
    if policy.max_delay is not None:
        seconds = min(seconds, policy.max_delay.total_seconds())
    if policy.jitter is not None and rng is not None:
        low, high = policy.jitter
        seconds += rng.uniform(low.total_seconds(), high.total_seconds())
    return timedelta(seconds=seconds)


class RetryEngine:
    """Decides which catch clause handles an error and whether to retry.

    Args:
        processor: Evaluates the ``when``/``exceptWhen`` predicates.
        use: Named retry policies of the running definition.
        rng: Random source for jitter.
    """

    def __init__(self, processor: DataFlowProcessor, use: UseSpec, rng: random.Random | None = None) -> None:
        self.processor = processor
        self.use = use
        self.rng = rng

    def _predicates_pass(
        self,
        when: str | None,
        except_when: str | None,
        error: WorkflowError,
        variable: str,
        bindings: dict[str, Any],
        position: str | None,
    ) -> bool:
        if when is None and except_when is None:
            return True
        scope = {**bindings, variable: error.to_dict()}
        if when is not None and not self.processor.is_truthy(when, error.to_dict(), scope, position):
            return False
        return not (except_when is not None and self.processor.is_truthy(except_when, error.to_dict(), scope, position))

    def find_clause(
        self,
        clauses: Sequence[CatchClause],
        error: WorkflowError,
        bindings: dict[str, Any],
        position: str | None = None,
    ) -> tuple[int, CatchClause] | None:
        """Return the first clause (and its index) that catches ``error``.

        A clause catches when its ``errors.with`` filter matches and its
        ``when``/``exceptWhen`` predicates, evaluated with the error bound
        under the clause's ``as`` name, allow it.
        """
        for index, clause in enumerate(clauses):
            if not error_matches(error, clause.errors):
                continue
            if self._predicates_pass(clause.when, clause.except_when, error, clause.as_, bindings, position):
                return index, clause
        return None

    def policy_for(self, clause: CatchClause) -> RetryPolicy | None:
        if isinstance(clause.retry, str):
            return self.use.retries[clause.retry]
        return clause.retry

    def should_retry(
        self,
        policy: RetryPolicy,
        error: WorkflowError,
        attempt: int,
        elapsed: timedelta,
        bindings: dict[str, Any],
        variable: str = "error",
        position: str | None = None,
    ) -> bool:
        """Whether attempt number ``attempt`` (1-based) may be followed by another.

        Configuration errors are never retried. ``max_attempts`` counts every
        execution, the first one included, so ``max_attempts=3`` allows at
        most three executions.
        """
        if error.error_type is ErrorType.CONFIGURATION:
            return False
        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            logger.debug("retry_attempts_exhausted", attempt=attempt, position=position)
            return False
        if policy.max_duration is not None and elapsed >= policy.max_duration:
            logger.debug("retry_duration_exhausted", elapsed=elapsed.total_seconds(), position=position)
            return False
        return self._predicates_pass(policy.when, policy.except_when, error, variable, bindings, position)

    def delay(self, policy: RetryPolicy, failure: int) -> timedelta:
        return compute_delay(policy, failure, self.rng)
