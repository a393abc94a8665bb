"""Local in-memory async execution engine.

This module provides a local, in-process execution engine suitable for
development, testing, and single-instance deployments. Every instance runs
as its own asyncio task; fork branches run as child tasks of it.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from swflow.config import EngineConfig
from swflow.core.errors import ErrorType, WorkflowError
from swflow.core.models import WorkflowInstanceData
from swflow.core.types import ListenMode, WorkflowStatus
from swflow.engine.correlation import EventCorrelationStore
from swflow.engine.dataflow import DataFlowProcessor
from swflow.engine.flow import ControlFlowResolver
from swflow.engine.instance import WorkflowStateMachine
from swflow.engine.runner import TaskRunner
from swflow.engine.store import InMemoryInstanceStore
from swflow.exceptions import WorkflowAlreadyCompletedError, WorkflowInstanceNotFoundError
from swflow.runtime.actions import ActionRegistry, SubworkflowAction
from swflow.runtime.expressions import JQExpressionEvaluator

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from swflow.core.definition import WorkflowDefinition
    from swflow.core.events import CloudEvent
    from swflow.core.protocols import EventBus, ExpressionEvaluator, InstanceStore, SchemaValidator
    from swflow.engine.registry import WorkflowRegistry

__all__ = ["LocalExecutionEngine"]

logger = structlog.get_logger(__name__)


class LocalExecutionEngine:
    """In-memory async execution engine for workflows.

    This engine executes workflows in the same process using asyncio tasks.
    Instance records are written through ``store`` on every change, so an
    engine started later can pick up non-terminal instances with
    :meth:`resume_instance`.

    Args:
        registry: The workflow registry for looking up definitions.
        store: Persistence for instance records. Defaults to an in-memory store.
        event_bus: Optional receiver of lifecycle events and emitted events.
        config: Engine settings.
        actions: Executors for ``call`` and ``run`` tasks.
        evaluator: Expression evaluator. Defaults to jq.
        validator: Schema validator. Defaults to the registry's validator.

    Example:
        >>> engine = LocalExecutionEngine(registry)
        >>> instance = await engine.start_workflow("order", {"orderId": "o-1"})
        >>> instance = await engine.wait_for_completion(instance.id)
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        store: InstanceStore | None = None,
        event_bus: EventBus | None = None,
        config: EngineConfig | None = None,
        actions: ActionRegistry | None = None,
        evaluator: ExpressionEvaluator | None = None,
        validator: SchemaValidator | None = None,
    ) -> None:
        self.registry = registry
        self.store = store or InMemoryInstanceStore()
        self.event_bus = event_bus
        self.config = config or EngineConfig()
        self.actions = actions or ActionRegistry()
        if not self.actions.has("workflow"):
            self.actions.register("workflow", SubworkflowAction(self))

        self.processor = DataFlowProcessor(evaluator or JQExpressionEvaluator(), validator or registry.validator)
        self.resolver = ControlFlowResolver(self.processor)
        self.correlations = EventCorrelationStore(self.processor)

        self._machines: dict[UUID, WorkflowStateMachine] = {}
        self._running: dict[UUID, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._schedules: list[asyncio.Task[None]] = []
        self._schedule_matches: dict[str, dict[int, CloudEvent]] = {}

    async def start_workflow(
        self,
        name: str,
        input: Any = None,  # noqa: A002
        *,
        version: str | None = None,
        namespace: str | None = None,
        parent_id: UUID | None = None,
    ) -> WorkflowInstanceData:
        """Instantiate a registered definition and start running it.

        Args:
            name: The workflow name.
            input: Raw workflow input.
            version: Definition version. Defaults to the highest registered.
            namespace: Definition namespace. Defaults to ``default``.
            parent_id: Instance that starts this one as a subworkflow.

        Returns:
            The created instance. Execution continues in the background.

        Raises:
            WorkflowNotFoundError: If no such definition is registered.
        """
        definition = self.registry.get_definition(name, version, namespace)
        instance = WorkflowInstanceData(
            id=uuid4(),
            namespace=definition.namespace,
            workflow_name=definition.name,
            workflow_version=definition.version,
            status=WorkflowStatus.CREATED,
            created_at=datetime.now(timezone.utc),
            input=copy.deepcopy(input),
            parent_id=parent_id,
        )
        await self.store.save(instance)
        logger.info(
            "workflow_instance_created",
            instance_id=str(instance.id),
            workflow=definition.identity,
            parent_id=str(parent_id) if parent_id else None,
        )
        self._launch(instance, definition)
        return instance

    def _launch(self, instance: WorkflowInstanceData, definition: WorkflowDefinition) -> None:
        machine = WorkflowStateMachine(instance, self.store, self.event_bus)
        self._machines[instance.id] = machine
        runner = TaskRunner(self, definition, machine)
        self._running[instance.id] = asyncio.create_task(self._execute(runner), name=f"swflow-{instance.id}")

    async def _execute(self, runner: TaskRunner) -> None:
        instance = runner.instance
        try:
            await runner.run()
        except asyncio.CancelledError:
            logger.debug("workflow_task_cancelled", instance_id=str(instance.id), status=instance.status.value)
            raise
        except Exception as e:
            logger.exception("workflow_crashed", instance_id=str(instance.id), workflow=instance.workflow_name)
            if instance.status is WorkflowStatus.SUSPENDED:
                await runner.machine.resume()
            if instance.status is WorkflowStatus.RUNNING:
                await runner.machine.fault(
                    WorkflowError.of(ErrorType.RUNTIME, str(e) or type(e).__name__, instance=instance.position)
                )
        finally:
            self._running.pop(instance.id, None)

    def spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task[Any]:
        """Run ``coro`` in the background, keeping a reference until it finishes.

        Used by ``run`` tasks with ``await: false``. Failures are logged.
        """
        task = asyncio.create_task(coro, name=description)
        self._background.add(task)

        def finished(done: asyncio.Task[Any]) -> None:
            self._background.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.warning("background_action_failed", action=description, error=str(done.exception()))

        task.add_done_callback(finished)
        return task

    async def wait_for_completion(self, instance_id: UUID, timeout: float | None = None) -> WorkflowInstanceData:
        """Wait until the instance is no longer executing and return its record.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first. The instance keeps running.
            WorkflowInstanceNotFoundError: If the instance does not exist.
        """
        task = self._running.get(instance_id)
        if task is not None:
            _, pending = await asyncio.wait({task}, timeout=timeout)
            if pending:
                msg = f"Workflow instance {instance_id} did not finish within {timeout} seconds"
                raise TimeoutError(msg)
        return await self.get_instance(instance_id)

    async def get_instance(self, instance_id: UUID) -> WorkflowInstanceData:
        """Retrieve a workflow instance by ID.

        Raises:
            WorkflowInstanceNotFoundError: If the instance is not found.
        """
        machine = self._machines.get(instance_id)
        if machine is not None:
            return machine.instance

        instance = await self.store.load(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        return instance

    async def list_instances(self, status: WorkflowStatus | None = None) -> list[WorkflowInstanceData]:
        return await self.store.list(status)

    def get_running_instances(self) -> list[WorkflowInstanceData]:
        """Instances this engine is executing right now, suspended ones included."""
        return [self._machines[instance_id].instance for instance_id in self._running]

    async def publish(self, event: CloudEvent) -> list[UUID]:
        """Ingest an event.

        The event is offered to every pending correlation, then to every
        definition whose ``schedule.on`` it triggers.

        Returns:
            Ids of the instances the event resumed or started.
        """
        resumed = [pending.instance_id for pending in self.correlations.on_event(event)]
        started = await self._start_on_event(event)
        logger.info("event_published", event_type=event.type, event_id=event.id, resumed=len(resumed), started=len(started))
        return resumed + started

    async def emit(self, event: CloudEvent) -> None:
        """Deliver an event produced by an ``emit`` task to the bus and back into the engine."""
        if self.event_bus is not None:
            await self.event_bus.publish(event)
        await self.publish(event)

    async def _start_on_event(self, event: CloudEvent) -> list[UUID]:
        started = []
        for definition in self.registry.list_definitions():
            schedule = definition.schedule
            if schedule is None or not schedule.on_filters:
                continue
            matched = self._schedule_matches.setdefault(definition.identity, {})
            for index, flt in enumerate(schedule.on_filters):
                if index not in matched and self.correlations.matches(flt, event):
                    matched[index] = event
                    break
            if not matched:
                continue
            if schedule.on_mode is ListenMode.ALL:
                if len(matched) < len(schedule.on_filters):
                    continue
                input_ = [matched[index].data for index in sorted(matched)]
            else:
                input_ = event.data
            self._schedule_matches.pop(definition.identity)
            instance = await self.start_workflow(
                definition.name, input_, version=definition.version, namespace=definition.namespace
            )
            started.append(instance.id)
        return started

    async def cancel_workflow(self, instance_id: UUID, reason: str = "Cancelled") -> WorkflowInstanceData:
        """Terminate an instance and every running subworkflow it started.

        Pending correlations and timers of the instance are cancelled and no
        further transforms are applied.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            WorkflowAlreadyCompletedError: If the instance is already terminal.
        """
        instance = await self.get_instance(instance_id)
        if instance.is_terminal:
            raise WorkflowAlreadyCompletedError(instance_id, instance.status.value)

        machine = self._machines.get(instance_id) or WorkflowStateMachine(instance, self.store, self.event_bus)
        await machine.terminate(reason)
        cancelled = self.correlations.cancel_instance(instance_id)
        logger.info("workflow_cancelled", instance_id=str(instance_id), reason=reason, correlations=cancelled)

        task = self._running.pop(instance_id, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        for child in [m.instance for m in self._machines.values() if m.instance.parent_id == instance_id]:
            if not child.is_terminal:
                await self.cancel_workflow(child.id, f"Parent {instance_id} cancelled: {reason}")
        return instance

    async def resume_instance(self, instance_id: UUID) -> WorkflowInstanceData:
        """Continue a persisted non-terminal instance, typically after a restart.

        Completed tasks are not replayed: execution picks up at the recorded
        checkpoints, and pending listeners register again.

        Raises:
            WorkflowInstanceNotFoundError: If the store has no such instance.
            WorkflowAlreadyCompletedError: If the instance is terminal.
        """
        if instance_id in self._running:
            return self._machines[instance_id].instance

        instance = await self.store.load(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        if instance.is_terminal:
            raise WorkflowAlreadyCompletedError(instance_id, instance.status.value)

        definition = self.registry.get_definition(
            instance.workflow_name, instance.workflow_version, instance.namespace
        )
        self._launch(instance, definition)
        logger.info("workflow_instance_resumed", instance_id=str(instance_id), position=instance.position)
        return instance

    async def start_schedules(self) -> None:
        """Start the timers of every registered ``schedule.every`` and ``schedule.after``."""
        for definition in self.registry.list_definitions():
            schedule = definition.schedule
            if schedule is None:
                continue
            if schedule.cron is not None:
                logger.warning("cron_schedule_unsupported", workflow=definition.identity, cron=schedule.cron)
            if schedule.every is not None or schedule.after is not None:
                self._schedules.append(
                    asyncio.create_task(self._run_schedule(definition), name=f"swflow-schedule-{definition.identity}")
                )

    async def _run_schedule(self, definition: WorkflowDefinition) -> None:
        schedule = definition.schedule
        while True:
            if schedule.every is not None:
                await self.config.sleep(schedule.every.total_seconds())
                await self.start_workflow(definition.name, version=definition.version, namespace=definition.namespace)
            else:
                await self.config.sleep(schedule.after.total_seconds())
                instance = await self.start_workflow(
                    definition.name, version=definition.version, namespace=definition.namespace
                )
                await self.wait_for_completion(instance.id)

    async def stop_schedules(self) -> None:
        for task in self._schedules:
            task.cancel()
        await asyncio.gather(*self._schedules, return_exceptions=True)
        self._schedules.clear()

    async def shutdown(self) -> None:
        """Stop schedules and running instances.

        Running instances keep their persisted non-terminal status so another
        engine can resume them.
        """
        await self.stop_schedules()
        tasks = [*self._running.values(), *self._background]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()
        logger.info("engine_stopped", cancelled=len(tasks))
