"""Domain events and the inbound event envelope.

Lifecycle events (:class:`WorkflowEvent` subclasses) are emitted by the
instance state machine on every transition and on every task outcome. They
can be used for logging, monitoring or triggering side effects.

:class:`CloudEvent` is the envelope of events published *into* the engine
(and of the events ``emit`` tasks produce).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import UUID, uuid4

__all__ = [
    "CloudEvent",
    "TaskCompleted",
    "TaskFaulted",
    "TaskRetried",
    "TaskSkipped",
    "TaskStarted",
    "WorkflowCompleted",
    "WorkflowEvent",
    "WorkflowFaulted",
    "WorkflowResumed",
    "WorkflowStarted",
    "WorkflowSuspended",
    "WorkflowTerminated",
]


@dataclass
class WorkflowEvent:
    """Base class for all lifecycle events.

    Attributes:
        instance_id: Unique identifier of the workflow instance.
        timestamp: When the event occurred.
    """

    event_type: ClassVar[str] = "workflow.event"

    instance_id: UUID
    timestamp: datetime


@dataclass
class WorkflowStarted(WorkflowEvent):
    """Emitted when an instance moves from ``created`` to ``running``.

    Example:
        >>> event = WorkflowStarted(
        ...     instance_id=uuid4(),
        ...     timestamp=datetime.now(timezone.utc),
        ...     workflow_name="order",
        ...     workflow_version="1.0.0",
        ...     input={"order_id": "o-1"},
        ... )
    """

    event_type: ClassVar[str] = "workflow.started"

    workflow_name: str
    workflow_version: str
    input: Any = None


@dataclass
class WorkflowCompleted(WorkflowEvent):
    event_type: ClassVar[str] = "workflow.completed"

    output: Any = None
    duration_seconds: float | None = None


@dataclass
class WorkflowFaulted(WorkflowEvent):
    """Emitted when an unmatched error faults the instance.

    Attributes:
        error: The error record, as a mapping.
        position: Position the main frame was at when it faulted.
    """

    event_type: ClassVar[str] = "workflow.faulted"

    error: dict[str, Any]
    position: str | None = None


@dataclass
class WorkflowTerminated(WorkflowEvent):
    event_type: ClassVar[str] = "workflow.terminated"

    reason: str
    position: str | None = None


@dataclass
class WorkflowSuspended(WorkflowEvent):
    event_type: ClassVar[str] = "workflow.suspended"

    position: str | None = None


@dataclass
class WorkflowResumed(WorkflowEvent):
    event_type: ClassVar[str] = "workflow.resumed"

    position: str | None = None


@dataclass
class TaskStarted(WorkflowEvent):
    """Emitted before a task's input is processed.

    Attributes:
        task_name: Name of the task.
        task_kind: Kind of the task.
        position: JSON pointer of the task.
    """

    event_type: ClassVar[str] = "task.started"

    task_name: str
    task_kind: str
    position: str


@dataclass
class TaskCompleted(WorkflowEvent):
    event_type: ClassVar[str] = "task.completed"

    task_name: str
    position: str
    output: Any = None


@dataclass
class TaskFaulted(WorkflowEvent):
    event_type: ClassVar[str] = "task.faulted"

    task_name: str
    position: str
    error: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskSkipped(WorkflowEvent):
    """Emitted when a task's ``if`` guard evaluates falsy."""

    event_type: ClassVar[str] = "task.skipped"

    task_name: str
    position: str


@dataclass
class TaskRetried(WorkflowEvent):
    """Emitted before a ``try`` block waits to run again.

    Attributes:
        attempt: Number of the attempt about to run (the first run is 1).
        delay_seconds: How long the engine waits before that attempt.
    """

    event_type: ClassVar[str] = "task.retried"

    task_name: str
    position: str
    attempt: int
    delay_seconds: float
    error: dict[str, Any] = field(default_factory=dict)


@dataclass
class CloudEvent:
    """Envelope of an event published into (or emitted by) the engine.

    Attributes:
        type: Event type, the primary filter key.
        source: Producer of the event.
        data: Event payload.
        id: Unique event id.
        time: When the event happened.
        subject: Optional subject of the event.
        attributes: Extension attributes, matched like the core ones.
    """

    type: str
    source: str = "swflow"
    data: Any = None
    id: str = field(default_factory=lambda: str(uuid4()))
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subject: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    _CORE = ("type", "source", "data", "id", "time", "subject")

    def get(self, attribute: str) -> Any:
        """Return a core or extension attribute by name."""
        if attribute in self._CORE:
            return getattr(self, attribute)
        return self.attributes.get(attribute)

    def to_dict(self) -> dict[str, Any]:
        envelope = {
            "specversion": "1.0",
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "time": self.time.isoformat(),
            "data": self.data,
            **self.attributes,
        }
        if self.subject is not None:
            envelope["subject"] = self.subject
        return envelope

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CloudEvent:
        attributes = {key: value for key, value in data.items() if key not in (*cls._CORE, "specversion")}
        time = data.get("time")
        return cls(
            type=data["type"],
            source=data.get("source", "swflow"),
            data=data.get("data"),
            id=data.get("id") or str(uuid4()),
            time=datetime.fromisoformat(time) if isinstance(time, str) else (time or datetime.now(timezone.utc)),
            subject=data.get("subject"),
            attributes=attributes,
        )
