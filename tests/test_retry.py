"""Tests for catch matching and retry decisions."""

from __future__ import annotations

import random
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from swflow.engine.dataflow import DataFlowProcessor


@pytest.mark.unit
class TestComputeDelay:
    """Tests for compute_delay."""

    def test_constant(self) -> None:
        """Test constant backoff waits the same delay every time."""
        from swflow.core.tasks import RetryPolicy
        from swflow.engine.retry import compute_delay

        policy = RetryPolicy(delay=timedelta(seconds=2))

        assert [compute_delay(policy, n) for n in (1, 2, 3)] == [timedelta(seconds=2)] * 3

    def test_linear(self) -> None:
        """Test linear backoff grows with the failure count."""
        from swflow.core.tasks import Backoff, RetryPolicy
        from swflow.engine.retry import compute_delay

        policy = RetryPolicy(delay=timedelta(seconds=1), backoff=Backoff.LINEAR)

        assert [compute_delay(policy, n).total_seconds() for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_exponential_with_cap(self) -> None:
        """Test exponential growth is capped by max_delay."""
        from swflow.core.tasks import Backoff, RetryPolicy
        from swflow.engine.retry import compute_delay

        policy = RetryPolicy(
            delay=timedelta(seconds=1),
            backoff=Backoff.EXPONENTIAL,
            multiplier=2,
            max_delay=timedelta(seconds=5),
        )

        assert [compute_delay(policy, n).total_seconds() for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_in_bounds(self) -> None:
        """Test jitter adds a random amount within its range."""
        from swflow.core.tasks import RetryPolicy
        from swflow.engine.retry import compute_delay

        policy = RetryPolicy(delay=timedelta(seconds=1), jitter=(timedelta(seconds=1), timedelta(seconds=2)))
        rng = random.Random(42)

        for failure in range(1, 20):
            assert 2.0 <= compute_delay(policy, failure, rng).total_seconds() <= 3.0


@pytest.mark.unit
class TestErrorMatches:
    """Tests for error_matches."""

    def test_type_compares_canonically(self) -> None:
        """Test short names match the taxonomy URI."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.engine.retry import error_matches

        error = WorkflowError.of(ErrorType.TIMEOUT)

        assert error_matches(error, {"type": "timeout"})
        assert error_matches(error, {"type": ErrorType.TIMEOUT.uri, "status": 408})
        assert not error_matches(error, {"type": "runtime"})

    def test_empty_filter_matches_everything(self) -> None:
        """Test a clause without filter catches any error."""
        from swflow.core.errors import WorkflowError
        from swflow.engine.retry import error_matches

        assert error_matches(WorkflowError(type="https://example.com/x", status=418), {})

    def test_other_fields(self) -> None:
        """Test status, instance and detail filters."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.engine.retry import error_matches

        error = WorkflowError.of(ErrorType.COMMUNICATION, "down", instance="/do/0/call")

        assert error_matches(error, {"status": "500", "instance": "/do/0/call"})
        assert not error_matches(error, {"detail": "up"})


@pytest.mark.unit
class TestRetryEngine:
    """Tests for RetryEngine decisions."""

    def _engine(self, processor: DataFlowProcessor, **retries: object):
        from swflow.core.definition import UseSpec
        from swflow.engine.retry import RetryEngine

        return RetryEngine(processor, UseSpec(retries=retries))  # type: ignore[arg-type]

    def test_find_clause_order_and_predicates(self, processor: DataFlowProcessor) -> None:
        """Test the first clause that matches (filter and predicates) wins."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.core.tasks import CatchClause

        clauses = (
            CatchClause(errors={"type": "timeout"}),
            CatchClause(errors={"type": "runtime"}, when="$err.detail == \"retryable\"", as_="err"),
            CatchClause(errors={"type": "runtime"}, except_when=".detail == \"fatal\""),
        )
        retry = self._engine(processor)

        found = retry.find_clause(clauses, WorkflowError.of(ErrorType.RUNTIME, "retryable"), {})
        assert found is not None
        assert found[0] == 1

        found = retry.find_clause(clauses, WorkflowError.of(ErrorType.RUNTIME, "other"), {})
        assert found is not None
        assert found[0] == 2

        assert retry.find_clause(clauses, WorkflowError.of(ErrorType.RUNTIME, "fatal"), {}) is None

    def test_policy_for_resolves_names(self, processor: DataFlowProcessor) -> None:
        """Test named policies come from the use section."""
        from swflow.core.tasks import CatchClause, RetryPolicy

        named = RetryPolicy(max_attempts=5)
        inline = RetryPolicy(max_attempts=2)
        retry = self._engine(processor, default=named)

        assert retry.policy_for(CatchClause(retry="default")) is named
        assert retry.policy_for(CatchClause(retry=inline)) is inline
        assert retry.policy_for(CatchClause()) is None

    def test_max_attempts_counts_first_execution(self, processor: DataFlowProcessor) -> None:
        """Test max_attempts=3 allows exactly two retries."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.core.tasks import RetryPolicy

        policy = RetryPolicy(max_attempts=3)
        error = WorkflowError.of(ErrorType.COMMUNICATION)
        retry = self._engine(processor)

        decisions = [retry.should_retry(policy, error, attempt, timedelta(0), {}) for attempt in (1, 2, 3)]

        assert decisions == [True, True, False]

    def test_max_duration(self, processor: DataFlowProcessor) -> None:
        """Test retries stop once the duration limit elapsed."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.core.tasks import RetryPolicy

        policy = RetryPolicy(max_duration=timedelta(seconds=10))
        error = WorkflowError.of(ErrorType.COMMUNICATION)
        retry = self._engine(processor)

        assert retry.should_retry(policy, error, 1, timedelta(seconds=5), {})
        assert not retry.should_retry(policy, error, 1, timedelta(seconds=10), {})

    def test_configuration_errors_are_never_retried(self, processor: DataFlowProcessor) -> None:
        """Test configuration errors bypass retry policies."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.core.tasks import RetryPolicy

        retry = self._engine(processor)

        assert not retry.should_retry(RetryPolicy(), WorkflowError.of(ErrorType.CONFIGURATION), 1, timedelta(0), {})

    def test_policy_predicates(self, processor: DataFlowProcessor) -> None:
        """Test when/exceptWhen see the error under the clause variable."""
        from swflow.core.errors import WorkflowError
        from swflow.core.tasks import RetryPolicy

        policy = RetryPolicy(when="$error.status >= 500", except_when="$error.status == 501")
        retry = self._engine(processor)

        def decide(status: int) -> bool:
            return retry.should_retry(
                policy, WorkflowError(type="https://example.com/x", status=status), 1, timedelta(0), {}
            )

        assert decide(503)
        assert not decide(501)
        assert not decide(404)
