"""Data Transfer Objects for the workflow web API.

This module defines DTOs for serializing and deserializing workflow data
in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from swflow.core.definition import WorkflowDefinition
    from swflow.core.models import WorkflowInstanceData

__all__ = [
    "CancelWorkflowDTO",
    "PublishEventDTO",
    "PublishResultDTO",
    "StartWorkflowDTO",
    "WorkflowDefinitionDTO",
    "WorkflowInstanceDTO",
    "WorkflowInstanceDetailDTO",
]


@dataclass
class StartWorkflowDTO:
    """DTO for starting a new workflow instance.

    Attributes:
        name: Name of the workflow definition to instantiate.
        input: Raw workflow input.
        version: Definition version. Defaults to the highest registered.
        namespace: Definition namespace. Defaults to ``default``.
    """

    name: str
    input: Any = None
    version: str | None = None
    namespace: str | None = None


@dataclass
class CancelWorkflowDTO:
    """Optional body of a cancel request."""

    reason: str = "Cancelled"


@dataclass
class PublishEventDTO:
    """DTO for an event published into the engine.

    Attributes:
        type: Event type.
        source: Producer of the event.
        data: Event payload.
        id: Event id. Generated when omitted.
        subject: Optional subject.
        attributes: Extension attributes.
    """

    type: str
    source: str = "swflow"
    data: Any = None
    id: str | None = None
    subject: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_envelope(self) -> dict[str, Any]:
        envelope: dict[str, Any] = {**self.attributes, "type": self.type, "source": self.source, "data": self.data}
        if self.id is not None:
            envelope["id"] = self.id
        if self.subject is not None:
            envelope["subject"] = self.subject
        return envelope


@dataclass
class PublishResultDTO:
    """Instances an event resumed or started."""

    event_id: str
    instance_ids: list[UUID]


@dataclass
class WorkflowDefinitionDTO:
    """DTO for workflow definition metadata.

    Attributes:
        namespace: Workflow namespace.
        name: Workflow name.
        version: Workflow version.
        title: Human-readable title.
        summary: Human-readable summary.
        tasks: Names of the top-level tasks, in document order.
    """

    namespace: str
    name: str
    version: str
    title: str | None
    summary: str | None
    tasks: list[str]

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowDefinitionDTO:
        return cls(
            namespace=definition.namespace,
            name=definition.name,
            version=definition.version,
            title=definition.title,
            summary=definition.summary,
            tasks=[task.name for task in definition.do],
        )


@dataclass
class WorkflowInstanceDTO:
    """DTO for workflow instance summary.

    Attributes:
        id: Instance ID.
        namespace: Namespace of the definition.
        workflow_name: Name of the workflow definition.
        workflow_version: Version of the workflow definition.
        status: Current execution status.
        position: JSON pointer of the task being executed.
        started_at: When the instance started.
        completed_at: When the instance reached a terminal status.
    """

    id: UUID
    namespace: str
    workflow_name: str
    workflow_version: str
    status: str
    position: str | None
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def from_instance(cls, instance: WorkflowInstanceData) -> WorkflowInstanceDTO:
        return cls(
            id=instance.id,
            namespace=instance.namespace,
            workflow_name=instance.workflow_name,
            workflow_version=instance.workflow_version,
            status=instance.status.value,
            position=instance.position,
            started_at=instance.started_at,
            completed_at=instance.completed_at,
        )


@dataclass
class WorkflowInstanceDetailDTO:
    """Detailed DTO for a workflow instance.

    Attributes:
        id: Instance ID.
        namespace: Namespace of the definition.
        workflow_name: Name of the workflow definition.
        workflow_version: Version of the workflow definition.
        status: Current execution status.
        position: JSON pointer of the task being executed.
        input: Raw workflow input.
        output: Workflow output once completed.
        context: Current ``$context``.
        error: Error record of a faulted instance.
        parent_id: Instance that started this one as a subworkflow.
        created_at: When the instance was created.
        started_at: When the instance started.
        completed_at: When the instance reached a terminal status.
    """

    id: UUID
    namespace: str
    workflow_name: str
    workflow_version: str
    status: str
    position: str | None
    input: Any
    output: Any
    context: dict[str, Any]
    error: dict[str, Any] | None
    parent_id: UUID | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def from_instance(cls, instance: WorkflowInstanceData) -> WorkflowInstanceDetailDTO:
        return cls(
            id=instance.id,
            namespace=instance.namespace,
            workflow_name=instance.workflow_name,
            workflow_version=instance.workflow_version,
            status=instance.status.value,
            position=instance.position,
            input=instance.input,
            output=instance.output,
            context=instance.context,
            error=instance.error.to_dict() if instance.error else None,
            parent_id=instance.parent_id,
            created_at=instance.created_at,
            started_at=instance.started_at,
            completed_at=instance.completed_at,
        )
