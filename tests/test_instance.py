"""Tests for the instance state machine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

if TYPE_CHECKING:
    from conftest import RecordingEventBus

    from swflow.core.models import WorkflowInstanceData
    from swflow.engine.instance import WorkflowStateMachine
    from swflow.engine.store import InMemoryInstanceStore


@pytest.fixture
def instance() -> WorkflowInstanceData:
    """A freshly created instance record."""
    from swflow.core.models import WorkflowInstanceData
    from swflow.core.types import WorkflowStatus

    return WorkflowInstanceData(
        id=uuid4(),
        namespace="default",
        workflow_name="order",
        workflow_version="1.0.0",
        status=WorkflowStatus.CREATED,
        created_at=datetime.now(timezone.utc),
        input={"orderId": "o-1"},
    )


@pytest.fixture
def store() -> InMemoryInstanceStore:
    from swflow.engine.store import InMemoryInstanceStore

    return InMemoryInstanceStore()


@pytest.fixture
def machine(
    instance: WorkflowInstanceData, store: InMemoryInstanceStore, event_bus: RecordingEventBus
) -> WorkflowStateMachine:
    from swflow.engine.instance import WorkflowStateMachine

    return WorkflowStateMachine(instance, store, event_bus)


@pytest.mark.unit
class TestTransitions:
    """Tests for lifecycle transitions."""

    async def test_start_and_complete(
        self, machine: WorkflowStateMachine, store: InMemoryInstanceStore, event_bus: RecordingEventBus
    ) -> None:
        """Test the happy path persists and emits every step."""
        from swflow.core.types import WorkflowStatus

        await machine.start()
        await machine.checkpoint("/do", {"index": 0, "input": None}, "/do/0/a")
        await machine.complete({"done": True})

        saved = await store.load(machine.instance.id)
        assert saved is not None
        assert saved.status is WorkflowStatus.COMPLETED
        assert saved.output == {"done": True}
        assert saved.node_states == {}
        assert saved.completed_at is not None
        assert [event.event_type for event in event_bus.events] == ["workflow.started", "workflow.completed"]
        assert event_bus.events[1].duration_seconds is not None

    async def test_fault_records_error(self, machine: WorkflowStateMachine, event_bus: RecordingEventBus) -> None:
        """Test fault stores the error and emits it."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.core.types import WorkflowStatus

        await machine.start()
        error = WorkflowError.of(ErrorType.RUNTIME, "boom", instance="/do/0/a")
        await machine.fault(error)

        assert machine.status is WorkflowStatus.FAILED
        assert machine.instance.error == error
        assert event_bus.of_type("workflow.faulted")[0].error["detail"] == "boom"

    async def test_terminate_from_created(self, machine: WorkflowStateMachine) -> None:
        """Test a created instance can be terminated without an error record."""
        from swflow.core.types import WorkflowStatus

        await machine.terminate("not needed")

        assert machine.status is WorkflowStatus.TERMINATED
        assert machine.instance.error is None

    @pytest.mark.parametrize("final", ["complete", "fault", "terminate"])
    async def test_terminal_statuses_are_final(self, machine: WorkflowStateMachine, final: str) -> None:
        """Test nothing leaves a terminal status."""
        from swflow.core.errors import ErrorType, WorkflowError
        from swflow.exceptions import InvalidTransitionError

        await machine.start()
        match final:
            case "complete":
                await machine.complete(None)
            case "fault":
                await machine.fault(WorkflowError.of(ErrorType.RUNTIME))
            case "terminate":
                await machine.terminate("stop")

        with pytest.raises(InvalidTransitionError):
            await machine.resume()
        with pytest.raises(InvalidTransitionError):
            await machine.terminate("again")

    async def test_created_cannot_complete(self, machine: WorkflowStateMachine) -> None:
        """Test completion requires a running instance."""
        from swflow.exceptions import InvalidTransitionError

        with pytest.raises(InvalidTransitionError):
            await machine.complete(None)

    def test_transition_table(self) -> None:
        """Test the table allows exactly the documented moves."""
        from swflow.core.types import WorkflowStatus
        from swflow.engine.instance import TRANSITIONS

        assert TRANSITIONS[WorkflowStatus.SUSPENDED] == {WorkflowStatus.RUNNING, WorkflowStatus.TERMINATED}
        assert all(not TRANSITIONS[status] for status in WorkflowStatus if status.is_terminal)


@pytest.mark.unit
class TestRecordWrites:
    """Tests for checkpoints and correlations on the record."""

    async def test_clear_node_states_prefix(self, machine: WorkflowStateMachine) -> None:
        """Test clearing a key drops nested checkpoints but not siblings."""
        await machine.start()
        await machine.checkpoint("/do/0/loop", {"outputs": []})
        await machine.checkpoint("/do/0/loop/do", {"index": 1, "input": None})
        await machine.checkpoint("/do/0/loopy", {"outputs": []})

        await machine.clear_node_states("/do/0/loop")

        assert set(machine.instance.node_states) == {"/do/0/loopy"}

    async def test_checkpoint_updates_position(self, machine: WorkflowStateMachine) -> None:
        """Test the main frame's position follows its checkpoints."""
        await machine.start()
        await machine.checkpoint("/do", {"index": 2, "input": 1}, "/do/2/send")

        assert machine.instance.position == "/do/2/send"
        assert machine.node_state("/do") == {"index": 2, "input": 1}

    async def test_correlations_replace_by_id(self, machine: WorkflowStateMachine) -> None:
        """Test adding the same correlation twice keeps one copy."""
        await machine.start()
        await machine.add_correlation({"id": "c1", "position": "/do/0/a"})
        await machine.add_correlation({"id": "c1", "position": "/do/0/b"})
        await machine.add_correlation({"id": "c2", "position": "/do/1/c"})
        await machine.remove_correlation("c2")

        assert machine.instance.pending_correlations == [{"id": "c1", "position": "/do/0/b"}]

    async def test_writes_ignored_once_terminal(self, machine: WorkflowStateMachine) -> None:
        """Test an unwinding frame cannot modify a terminated record."""
        await machine.start()
        await machine.terminate("stop")
        await machine.checkpoint("/do", {"index": 0, "input": None}, "/do/0/a")
        await machine.replace_context({"late": True})

        assert machine.instance.node_states == {}
        assert machine.instance.context == {}


@pytest.mark.unit
class TestSuspension:
    """Tests for suspension driven by waiting frames."""

    async def test_waiting_suspends_and_resumes(
        self, machine: WorkflowStateMachine, event_bus: RecordingEventBus
    ) -> None:
        """Test the only frame waiting suspends the instance."""
        from swflow.core.types import WorkflowStatus

        await machine.start()
        async with machine.waiting():
            assert machine.status is WorkflowStatus.SUSPENDED
        assert machine.status is WorkflowStatus.RUNNING
        assert [e.event_type for e in event_bus.events][-2:] == ["workflow.suspended", "workflow.resumed"]

    async def test_branch_waiting_alone_does_not_suspend(self, machine: WorkflowStateMachine) -> None:
        """Test one waiting branch keeps the instance running while another branch works."""
        from swflow.core.types import WorkflowStatus

        await machine.start()
        with machine.forked():
            async with machine.branch(), machine.branch():
                async with machine.waiting():
                    assert machine.status is WorkflowStatus.RUNNING
