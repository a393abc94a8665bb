"""Shared test fixtures for the swflow test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from uuid import UUID

    from swflow.core.events import CloudEvent, WorkflowEvent
    from swflow.core.models import WorkflowInstanceData
    from swflow.core.types import WorkflowStatus
    from swflow.engine.dataflow import DataFlowProcessor
    from swflow.engine.local import LocalExecutionEngine
    from swflow.engine.registry import WorkflowRegistry
    from swflow.runtime.actions import ActionRegistry


def make_document(name: str, tasks: list[dict[str, Any]], version: str = "1.0.0", **sections: Any) -> dict[str, Any]:
    """Build a workflow document in the default namespace.

    Args:
        name: Workflow name.
        tasks: The top-level ``do`` list.
        version: Workflow version.
        **sections: Extra top-level sections (``input``, ``output``, ``use``, ...).

    Returns:
        The workflow document.
    """
    return {
        "document": {"dsl": "1.0.0", "namespace": "default", "name": name, "version": version},
        "do": tasks,
        **sections,
    }


class RecordingEventBus:
    """Event bus that keeps everything it receives."""

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []
        self.published: list[CloudEvent] = []

    async def emit(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    async def publish(self, event: CloudEvent) -> None:
        self.published.append(event)

    def of_type(self, event_type: str) -> list[WorkflowEvent]:
        return [event for event in self.events if event.event_type == event_type]


class RecordingSleep:
    """Replacement for ``asyncio.sleep`` that records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


async def wait_for_status(
    engine: LocalExecutionEngine,
    instance_id: UUID,
    status: WorkflowStatus,
    timeout: float = 2.0,
) -> WorkflowInstanceData:
    """Poll an instance until it reaches ``status``.

    Raises:
        TimeoutError: If the status is not reached in time.
    """
    async with asyncio.timeout(timeout):
        while True:
            instance = await engine.get_instance(instance_id)
            if instance.status is status:
                return instance
            await asyncio.sleep(0.005)


@pytest.fixture
def event_bus() -> RecordingEventBus:
    """Event bus recording lifecycle and emitted events."""
    return RecordingEventBus()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    """Sleep hook that records every delay the engine asks for."""
    return RecordingSleep()


@pytest.fixture
def workflow_registry() -> WorkflowRegistry:
    """Create an empty workflow registry."""
    from swflow.engine.registry import WorkflowRegistry

    return WorkflowRegistry()


@pytest.fixture
def actions() -> ActionRegistry:
    """Action registry with a few functions tests can call.

    Returns:
        ActionRegistry with ``double``, ``echo`` and ``fail`` registered.
    """
    from swflow.runtime.actions import ActionRegistry

    registry = ActionRegistry()

    @registry.function()
    def double(value: Any) -> Any:
        return value * 2

    @registry.function()
    async def echo(value: Any) -> Any:
        return value

    @registry.function()
    def fail(value: Any) -> Any:
        msg = f"cannot handle {value!r}"
        raise RuntimeError(msg)

    return registry


@pytest.fixture
def local_engine(
    workflow_registry: WorkflowRegistry,
    event_bus: RecordingEventBus,
    fake_sleep: RecordingSleep,
    actions: ActionRegistry,
) -> LocalExecutionEngine:
    """Create a local execution engine that never really sleeps.

    Args:
        workflow_registry: Workflow registry fixture
        event_bus: Recording event bus fixture
        fake_sleep: Recording sleep fixture
        actions: Action registry fixture

    Returns:
        LocalExecutionEngine instance
    """
    from swflow.config import EngineConfig
    from swflow.engine.local import LocalExecutionEngine

    config = EngineConfig(secrets={"apiKey": "s3cr3t", "other": "hidden"}, sleep=fake_sleep)
    return LocalExecutionEngine(workflow_registry, event_bus=event_bus, config=config, actions=actions)


@pytest.fixture
def processor() -> DataFlowProcessor:
    """Data flow processor backed by jq and jsonschema."""
    from swflow.engine.dataflow import DataFlowProcessor
    from swflow.runtime.expressions import JQExpressionEvaluator
    from swflow.runtime.schemas import JSONSchemaValidator

    return DataFlowProcessor(JQExpressionEvaluator(), JSONSchemaValidator())


@pytest.fixture
def sample_document() -> dict[str, Any]:
    """A small order workflow document."""
    return make_document(
        "order",
        [
            {"validate": {"set": {"orderId": "${ .orderId }", "total": "${ .items | map(.price) | add }"}}},
            {
                "route": {
                    "switch": [
                        {"large": {"when": ".total > 100", "then": "review"}},
                        {"small": {"then": "approve"}},
                    ]
                }
            },
            {"review": {"set": {"orderId": "${ .orderId }", "approved": False}, "then": "end"}},
            {"approve": {"set": {"orderId": "${ .orderId }", "approved": True}}},
        ],
        input={"schema": {"type": "object", "required": ["orderId", "items"]}},
    )
