"""Workflow instance lifecycle.

:class:`WorkflowStateMachine` is the only writer of an instance's status,
position, context, checkpoints and pending correlations. Every write is
persisted through the configured store, and every status transition emits a
domain event.
"""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from swflow.core.events import (
    WorkflowCompleted,
    WorkflowFaulted,
    WorkflowResumed,
    WorkflowStarted,
    WorkflowSuspended,
    WorkflowTerminated,
)
from swflow.core.types import WorkflowStatus
from swflow.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from swflow.core.errors import WorkflowError
    from swflow.core.events import WorkflowEvent
    from swflow.core.models import WorkflowInstanceData
    from swflow.core.protocols import EventBus, InstanceStore

__all__ = ["TRANSITIONS", "WorkflowStateMachine"]

logger = structlog.get_logger(__name__)

TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.CREATED: frozenset({WorkflowStatus.RUNNING, WorkflowStatus.TERMINATED}),
    WorkflowStatus.RUNNING: frozenset(
        {WorkflowStatus.SUSPENDED, WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.TERMINATED}
    ),
    WorkflowStatus.SUSPENDED: frozenset({WorkflowStatus.RUNNING, WorkflowStatus.TERMINATED}),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.TERMINATED: frozenset(),
}
"""Allowed status transitions. Terminal statuses have none."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStateMachine:
    """Owns one instance record.

    The machine also counts the frames executing on behalf of the instance.
    The instance is ``suspended`` while every live frame waits on a timer or
    an event, and ``running`` otherwise.

    Args:
        instance: The record to manage.
        store: Where every change is persisted.
        event_bus: Receives lifecycle and task events.
    """

    def __init__(
        self,
        instance: WorkflowInstanceData,
        store: InstanceStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.instance = instance
        self.store = store
        self.event_bus = event_bus
        self._active = 1
        self._waiting = 0

    @property
    def status(self) -> WorkflowStatus:
        return self.instance.status

    async def _persist(self) -> None:
        if self.store is not None:
            await self.store.save(self.instance)

    async def emit(self, event: WorkflowEvent) -> None:
        """Deliver an event to the bus, if one is configured."""
        if self.event_bus is not None:
            await self.event_bus.emit(event)

    def _transition(self, target: WorkflowStatus) -> None:
        current = self.instance.status
        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(self.instance.id, current.value, target.value)
        self.instance.status = target
        logger.info(
            "workflow_transition",
            instance_id=str(self.instance.id),
            workflow=self.instance.workflow_name,
            from_status=current.value,
            to_status=target.value,
        )

    async def start(self) -> None:
        """``created`` to ``running``."""
        self._transition(WorkflowStatus.RUNNING)
        self.instance.started_at = _now()
        await self._persist()
        await self.emit(
            WorkflowStarted(
                instance_id=self.instance.id,
                timestamp=self.instance.started_at,
                workflow_name=self.instance.workflow_name,
                workflow_version=self.instance.workflow_version,
                input=self.instance.input,
            )
        )

    async def suspend(self) -> None:
        self._transition(WorkflowStatus.SUSPENDED)
        await self._persist()
        await self.emit(WorkflowSuspended(instance_id=self.instance.id, timestamp=_now(), position=self.instance.position))

    async def resume(self) -> None:
        self._transition(WorkflowStatus.RUNNING)
        await self._persist()
        await self.emit(WorkflowResumed(instance_id=self.instance.id, timestamp=_now(), position=self.instance.position))

    async def complete(self, output: Any) -> None:
        """``running`` to ``completed``. Checkpoints are dropped; the record is final."""
        self._transition(WorkflowStatus.COMPLETED)
        self.instance.output = output
        self.instance.completed_at = _now()
        self.instance.node_states = {}
        self.instance.pending_correlations = []
        await self._persist()

        duration = None
        if self.instance.started_at is not None:
            duration = (self.instance.completed_at - self.instance.started_at).total_seconds()
        await self.emit(
            WorkflowCompleted(
                instance_id=self.instance.id,
                timestamp=self.instance.completed_at,
                output=output,
                duration_seconds=duration,
            )
        )

    async def fault(self, error: WorkflowError) -> None:
        """``running`` to ``failed`` with ``error`` as the final error record."""
        self._transition(WorkflowStatus.FAILED)
        self.instance.error = error
        self.instance.completed_at = _now()
        self.instance.pending_correlations = []
        await self._persist()
        logger.warning(
            "workflow_faulted",
            instance_id=str(self.instance.id),
            workflow=self.instance.workflow_name,
            error_type=error.type,
            position=error.instance,
        )
        await self.emit(
            WorkflowFaulted(
                instance_id=self.instance.id,
                timestamp=self.instance.completed_at,
                error=error.to_dict(),
                position=self.instance.position,
            )
        )

    async def terminate(self, reason: str) -> None:
        """Any non-terminal status to ``terminated``."""
        self._transition(WorkflowStatus.TERMINATED)
        self.instance.completed_at = _now()
        self.instance.pending_correlations = []
        await self._persist()
        await self.emit(
            WorkflowTerminated(
                instance_id=self.instance.id,
                timestamp=self.instance.completed_at,
                reason=reason,
                position=self.instance.position,
            )
        )

    # Record writes below are dropped once the instance is terminal. A frame
    # that is being cancelled may still unwind through them.

    def _frozen(self, operation: str) -> bool:
        if self.instance.is_terminal:
            logger.debug("terminal_write_ignored", instance_id=str(self.instance.id), operation=operation)
            return True
        return False

    async def checkpoint(self, key: str, state: dict[str, Any], position: str | None = None) -> None:
        """Store a resume checkpoint and, for the main frame, its position."""
        if self._frozen("checkpoint"):
            return
        self.instance.node_states[key] = state
        if position is not None:
            self.instance.position = position
        await self._persist()

    def node_state(self, key: str) -> dict[str, Any] | None:
        return self.instance.node_states.get(key)

    async def clear_node_states(self, prefix: str) -> None:
        """Drop the checkpoint at ``prefix`` and every checkpoint beneath it."""
        if self._frozen("clear_node_states"):
            return
        nested = prefix.rstrip("/") + "/"
        stale = [key for key in self.instance.node_states if key == prefix or key.startswith(nested)]
        if not stale:
            return
        for key in stale:
            del self.instance.node_states[key]
        await self._persist()

    async def replace_context(self, context: dict[str, Any]) -> None:
        if self._frozen("replace_context"):
            return
        self.instance.context = context
        await self._persist()

    async def add_correlation(self, correlation: dict[str, Any]) -> None:
        if self._frozen("add_correlation"):
            return
        self.instance.pending_correlations = [
            item for item in self.instance.pending_correlations if item["id"] != correlation["id"]
        ]
        self.instance.pending_correlations.append(correlation)
        await self._persist()

    async def remove_correlation(self, correlation_id: str) -> None:
        if self._frozen("remove_correlation"):
            return
        self.instance.pending_correlations = [
            item for item in self.instance.pending_correlations if item["id"] != correlation_id
        ]
        await self._persist()

    async def reset_correlations(self) -> None:
        """Forget persisted listeners before a restarted instance registers them again."""
        if self._frozen("reset_correlations") or not self.instance.pending_correlations:
            return
        self.instance.pending_correlations = []
        await self._persist()

    @asynccontextmanager
    async def waiting(self) -> AsyncIterator[None]:
        """Mark the current frame as blocked on a timer or an event.

        The instance suspends when the last running frame starts waiting and
        resumes as soon as one waiting frame is released.
        """
        self._waiting += 1
        if self.instance.status is WorkflowStatus.RUNNING and self._waiting >= self._active:
            await self.suspend()
        try:
            yield
        finally:
            self._waiting -= 1
            if self.instance.status is WorkflowStatus.SUSPENDED:
                await self.resume()

    @contextmanager
    def forked(self) -> Iterator[None]:
        """The current frame hands over to fork branches until they join."""
        self._active -= 1
        try:
            yield
        finally:
            self._active += 1

    @asynccontextmanager
    async def branch(self) -> AsyncIterator[None]:
        """A fork branch frame is live."""
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1
            if self.instance.status is WorkflowStatus.RUNNING and self._active and self._waiting >= self._active:
                await self.suspend()
